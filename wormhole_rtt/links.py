import networkx as nx

from wormhole_rtt.config import PHY_MODES

SPEED_OF_LIGHT = 3e8
HEADER_OVERHEAD = 64  # MAC (24) + FCS (4) + LLC (8) + IP (20) + UDP (8), en octets


class LinkModel:
    """
    Interface commune au lien radio et au tunnel
    Le réseau ne fait que demander : peut-on livrer ? en combien de temps ? à qui en broadcast ?
    """
    def can_deliver(self, sender, receiver):
        raise NotImplementedError

    def delay(self, sender, receiver, size):
        raise NotImplementedError

    def receivers(self, sender):
        raise NotImplementedError

    def lost(self, sender, receiver):
        return False


class WirelessLinkModel(LinkModel):
    """
    Modèle "disque" : un noeud reçoit si il est à moins de max_dist de l'émetteur
    Délai = préambule + transmission + DIFS + backoff aléatoire + propagation
    """
    def __init__(self, network, max_dist, phy_mode="DsssRate1Mbps", cw_min=15, loss_prob=0.0):
        self.network = network
        self.max_dist = max_dist
        self.phy_mode = phy_mode
        self.rate, self.preamble, self.slot, self.sifs = PHY_MODES[phy_mode]
        self.difs = self.sifs + 2 * self.slot
        self.cw_min = cw_min
        self.loss_prob = loss_prob

    def in_range(self, n1, n2):
        return self.network.get_distance(n1, n2) <= self.max_dist

    def can_deliver(self, sender, receiver):
        return sender.id != receiver.id and self.in_range(sender, receiver)

    def receivers(self, sender):
        return [n for n in self.network.G.values() if self.can_deliver(sender, n)]

    def tx_time(self, size):
        return self.preamble + (size + HEADER_OVERHEAD) * 8 / self.rate

    def delay(self, sender, receiver, size):
        backoff = self.network.rng.randint(0, self.cw_min) * self.slot
        propagation = self.network.get_distance(sender, receiver) / SPEED_OF_LIGHT
        return self.difs + backoff + self.tx_time(size) + propagation

    def mean_delay(self, size):
        """Délai moyen d'un saut à portée max, sert de référence à la contre-mesure"""
        return self.difs + self.cw_min * self.slot / 2 + self.tx_time(size) + self.max_dist / SPEED_OF_LIGHT

    def lost(self, sender, receiver):
        return self.loss_prob > 0 and self.network.rng.random() < self.loss_prob

    def graph(self):
        """Graphe de connectivité radio (sans le tunnel)"""
        G = nx.Graph()
        nodes = list(self.network.G.values())
        G.add_nodes_from(n.id for n in nodes)
        for i, n1 in enumerate(nodes):
            for n2 in nodes[i + 1:]:
                if self.in_range(n1, n2):
                    G.add_edge(n1.id, n2.id)
        return G

    def physical_hops(self, src_id, dest_id):
        """Nombre de sauts radio du plus court chemin, None si pas connecté"""
        try:
            return nx.shortest_path_length(self.graph(), src_id, dest_id)
        except (nx.NetworkXNoPath, nx.NodeNotFound):
            return None
