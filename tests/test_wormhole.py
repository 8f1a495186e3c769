import pytest

from wormhole_rtt.errors import ConfigurationError
from wormhole_rtt.network import RREP_SIZE, RREQ_SIZE, Message


def test_install_registers_bidirectional_link(line_network):
    net = line_network(6)
    tunnel = net.install_wormhole(0, 5, 1e-6)

    assert net.tunnel is tunnel
    assert tunnel.peer(0) == 5
    assert tunnel.peer(5) == 0
    assert tunnel.peer(2) is None
    assert net.G[0].malicious and net.G[5].malicious
    assert not net.G[1].malicious
    assert net.link_for(net.G[0], net.G[5]) is tunnel
    assert net.link_for(net.G[5], net.G[0]) is tunnel
    assert net.link_for(net.G[0], net.G[1]) is net.link
    assert net.link_for(net.G[0], net.G[2]) is None


@pytest.mark.parametrize("a, b", [(0, 0), (0, 42), (-1, 3)])
def test_install_rejects_bad_endpoints(line_network, a, b):
    net = line_network(6)
    with pytest.raises(ConfigurationError):
        net.install_wormhole(a, b)
    assert net.tunnel is None


def test_tunnel_is_static(line_network):
    net = line_network(6)
    net.install_wormhole(0, 5)
    with pytest.raises(ConfigurationError):
        net.install_wormhole(1, 4)


def test_relay_bypasses_range(line_network):
    net = line_network(6)
    tunnel = net.install_wormhole(0, 5, latency=0.0)
    msg = Message("RREQ", src_id=0, dest_id=5, size=RREQ_SIZE, request_id=1, src_seq=1)

    tunnel.relay(net.G[0], msg)
    net.env.run(until=0.01)

    # 5 a reçu la RREQ en un seul saut alors qu'il est à 500 m
    assert net.G[5].routing_table[0].hop_count == 1
    assert net.G[5].routing_table[0].next_hop == 0
    # la RREP repasse par le tunnel pour revenir à 0
    assert tunnel.relayed_packets == 2
    assert tunnel.relayed_bytes == RREQ_SIZE + RREP_SIZE
    assert tunnel.relayed_by_type == {"RREQ": 1, "RREP": 1}


def test_relay_from_non_endpoint_does_nothing(line_network):
    net = line_network(6)
    tunnel = net.install_wormhole(0, 5)
    assert tunnel.relay(net.G[2], Message("DATA", 2, 4, 100)) is None
    assert tunnel.relayed_packets == 0


def test_tunnel_shortens_latency_not_hop_count(line_network):
    net = line_network(6, countermeasure_enabled=False)
    net.install_wormhole(0, 5, 1e-6)
    net.G[1].send(4, 100)
    net.env.run(until=1.0)

    entry = net.G[1].routing_table[4]
    assert entry.next_hop == 0
    assert entry.hop_count == 3
    rtt = net.G[1].discoveries[0]["rtt"]
    assert rtt < 0.8 * net.default_per_hop_rtt() * 3


def test_excluded_next_hop_is_avoided(line_network):
    net = line_network(6)
    net.install_wormhole(0, 5, 1e-6)
    net.G[1].suspects[4] = {0}
    net.G[1].send(4, 100)
    net.env.run(until=1.0)

    assert net.G[1].routing_table[4].next_hop == 2
    assert net.excluded_dropped >= 1
    assert net.messages_received == 1
