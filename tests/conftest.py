import pytest

from wormhole_rtt.config import SimulationConfig
from wormhole_rtt.network import Network


def build_line(nb_nodes, spacing=100.0, **cfg_changes):
    cfg = SimulationConfig(nb_nodes=nb_nodes, spacing=spacing, **cfg_changes)
    net = Network(cfg)
    for i in range(nb_nodes):
        net.add_node(i, (i * spacing, 0.0))
    return net


@pytest.fixture
def line_network():
    return build_line
