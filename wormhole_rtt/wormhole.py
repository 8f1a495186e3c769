import logging

from wormhole_rtt.errors import ConfigurationError
from wormhole_rtt.links import LinkModel

logger = logging.getLogger(__name__)


class WormholeTunnel(LinkModel):
    """
    Lien virtuel entre deux noeuds complices, hors des contraintes radio
    Un passage dans le tunnel compte pour un seul saut mais ne coûte que `latency`
    Configuré une fois au départ, ne change plus pendant la simulation
    """
    def __init__(self, network, node_a, node_b, latency=0.0):
        self.network = network
        self.endpoints = (node_a, node_b)
        self.latency = latency

        self.relayed_packets = 0
        self.relayed_bytes = 0
        self.relayed_by_type = {}

    @classmethod
    def install(cls, network, node_a, node_b, latency=0.0):
        """Crée le tunnel et l'enregistre dans le réseau, lève ConfigurationError si les extrémités sont invalides"""
        if node_a == node_b:
            raise ConfigurationError(f"wormhole endpoints must differ, got {node_a} twice")
        for nid in (node_a, node_b):
            if nid not in network.G:
                raise ConfigurationError(f"wormhole endpoint {nid} is not a node of the network")
        if latency < 0:
            raise ConfigurationError(f"tunnel latency must be >= 0, got {latency}")
        if network.tunnel is not None:
            raise ConfigurationError("a wormhole tunnel is already installed")

        tunnel = cls(network, node_a, node_b, latency)
        network.tunnel = tunnel
        for nid in tunnel.endpoints:
            network.G[nid].malicious = True
        logger.info("wormhole installed between %s and %s (latency %.2e s)", node_a, node_b, latency)
        return tunnel

    def peer(self, node_id):
        a, b = self.endpoints
        if node_id == a:
            return b
        if node_id == b:
            return a
        return None

    def can_deliver(self, sender, receiver):
        return self.peer(sender.id) == receiver.id

    def receivers(self, sender):
        peer = self.peer(sender.id)
        return [] if peer is None else [self.network.G[peer]]

    def delay(self, sender, receiver, size):
        return self.latency

    def relay(self, sender, msg):
        """Transmet un paquet (routage ou données) à l'autre extrémité après `latency`"""
        peer = self.peer(sender.id)
        if peer is None:
            return None

        self.relayed_packets += 1
        self.relayed_bytes += msg.size
        self.relayed_by_type[msg.typ] = self.relayed_by_type.get(msg.typ, 0) + 1
        logger.debug("t=%.6f tunnel %s -> %s: %s", self.network.env.now, sender.id, peer, msg)
        return self.network.env.process(self.network.deliver(self, sender, self.network.G[peer], msg))
