import copy
import logging
import random

import simpy

from wormhole_rtt.detector import NullDetector, RttWormholeDetector
from wormhole_rtt.flowmon import FlowMonitor
from wormhole_rtt.links import WirelessLinkModel

logger = logging.getLogger(__name__)

RREQ_SIZE = 24  # octets, tailles des messages AODV
RREP_SIZE = 20
PROBE_SIZE = RREQ_SIZE  # une sonde coûte comme une RREQ à l'aller et une RREP au retour
PROBE_REPLY_SIZE = RREP_SIZE


class Message:
    def __init__(self, typ, src_id, dest_id, size, request_id=None, src_seq=0,
                 hop_count=0, prev_hop=None, t_origin=0.0, excluded=(), src_port=None, dst_port=None,
                 data_seq=None, payload=None):
        self.typ = typ
        """ type de message : requête donc "RREQ" ou "RREP", sonde RTT "PROBE" / "PROBE_REPLY" ou bien data : "DATA" """

        self.src_id = src_id
        """ identifiant de l'émetteur du message (pour une RREP : le noeud qui répond) """

        self.dest_id = dest_id
        """ identifiant du destinataire """

        self.size = size
        """ taille utile en octets, sert au calcul des délais et au comptage des flux """

        self.request_id = request_id
        """ identifiant de la RREQ, unique par émetteur (RREP : id de la RREQ à laquelle on répond) """

        self.src_seq = src_seq
        """ numéro de séquence de la source au moment de l'émission """

        self.hop_count = hop_count
        """ nombre de sauts parcourus, incrémenté à chaque réception """

        self.prev_hop = src_id if prev_hop is None else prev_hop
        """ dernier noeud par lequel le message a été forwardé """

        self.t_origin = t_origin
        """ date d'émission par la source """

        self.path = [src_id]
        """ noeuds traversés par une RREQ """

        self.excluded = frozenset(excluded)
        """ noeuds que la source ne veut pas voir dans la route (suspectés) """

        self.src_port = src_port
        self.dst_port = dst_port
        self.data_seq = data_seq
        self.payload = payload

    def copy(self):
        return copy.deepcopy(self)  # chaque récepteur doit avoir son propre objet

    def __repr__(self):
        return (f"Message({self.typ}, src={self.src_id}, dest={self.dest_id}, req={self.request_id}, "
                f"hops={self.hop_count}, prev_hop={self.prev_hop})")


class Network:
    def __init__(self, cfg):
        self.cfg = cfg
        self.env = simpy.Environment()
        """ Environnement simpy : horloge unique de la simulation """

        self.rng = random.Random(cfg.seed)
        """ seul générateur aléatoire de la simu (backoff, pertes) => runs reproductibles """

        self.G = {}
        """ Graphe du réseau représenté par un dictionnaire node_id : node_obj """

        self.link = WirelessLinkModel(self, cfg.max_dist, cfg.phy_mode, cfg.cw_min, cfg.loss_prob)
        self.tunnel = None
        """ WormholeTunnel si l'attaque est active """

        self.detector = NullDetector()
        self.flowmon = FlowMonitor() if cfg.flow_monitor_enabled else None

        # métriques
        self.messages_initiated = 0
        self.messages_sent = 0
        self.messages_forwarded = 0
        self.messages_received = 0
        self.data_dropped = 0
        self.rreq_sent = 0
        self.rreq_forwarded = 0
        self.rrep_sent = 0
        self.rrep_forwarded = 0
        self.duplicates_dropped = 0
        self.excluded_dropped = 0
        self.stale_updates = 0
        self.suspected_routes = 0
        self.link_failures = 0
        self.lost_frames = 0
        self.probes_sent = 0
        self.probes_lost = 0

        self.route_failures = []
        """ NoRouteFound remontés aux applications """

    # ---------- Construction ----------
    def add_node(self, id, pos):
        from wormhole_rtt.node import Node
        n = Node(env=self.env, node_id=id, pos=pos, network=self)
        self.G[id] = n
        return n

    def install_wormhole(self, node_a, node_b, latency=0.0):
        from wormhole_rtt.wormhole import WormholeTunnel
        return WormholeTunnel.install(self, node_a, node_b, latency)

    def default_per_hop_rtt(self):
        """RTT attendu pour un saut : RREQ à l'aller, RREP au retour, traitement des deux côtés"""
        return (self.link.mean_delay(RREQ_SIZE) + self.link.mean_delay(RREP_SIZE)
                + 2 * self.cfg.processing_delay)

    def enable_countermeasure(self, per_hop_rtt=None):
        if per_hop_rtt is None:
            per_hop_rtt = self.cfg.per_hop_rtt if self.cfg.per_hop_rtt is not None else self.default_per_hop_rtt()
        self.detector = RttWormholeDetector(per_hop_rtt, tolerance=self.cfg.tolerance,
                                            min_samples=self.cfg.min_samples)
        logger.info("rtt countermeasure enabled (per-hop rtt %.6f s, tolerance %.2f)",
                    per_hop_rtt, self.cfg.tolerance)
        return self.detector

    def get_distance(self, n1, n2):
        return ((n2.pos[0] - n1.pos[0])**2 + (n2.pos[1] - n1.pos[1])**2)**0.5

    # ---------- Transmission ----------
    def link_for(self, sender, receiver):
        """Le tunnel est prioritaire : deux extrémités se voient toujours comme voisines"""
        if self.tunnel is not None and self.tunnel.can_deliver(sender, receiver):
            return self.tunnel
        if self.link.can_deliver(sender, receiver):
            return self.link
        return None

    def deliver(self, link, sender, receiver, msg):
        yield self.env.timeout(link.delay(sender, receiver, msg.size))
        receiver.on_receive(msg)

    def _send_over(self, link, sender, receiver, msg):
        if link is self.tunnel:
            self.tunnel.relay(sender, msg)
        elif link.lost(sender, receiver):
            self.lost_frames += 1
            logger.debug("t=%.6f frame %s lost on %s -> %s", self.env.now, msg, sender.id, receiver.id)
        else:
            self.env.process(self.deliver(link, sender, receiver, msg))

    def broadcast(self, node, msg):
        """Envoie une copie de msg à tous les noeuds à portée de node (et à l'autre bout du tunnel)"""
        receivers = [(self.link, n) for n in self.link.receivers(node)]
        if self.tunnel is not None:
            receivers += [(self.tunnel, n) for n in self.tunnel.receivers(node)]

        for link, neighbor in receivers:
            self._send_over(link, node, neighbor, msg.copy())
        node.on_send_complete(msg)
        return len(receivers)

    def unicast(self, node, next_hop, msg):
        """Envoie msg au voisin next_hop, renvoie False si le lien n'existe pas"""
        receiver = self.G.get(next_hop)
        link = self.link_for(node, receiver) if receiver is not None else None
        if link is None:
            self.link_failures += 1
            logger.info("t=%.6f node %s: no link to next hop %s for %s", self.env.now, node.id, next_hop, msg)
            return False

        self._send_over(link, node, receiver, msg)
        node.on_send_complete(msg)
        return True

    # ---------- Métriques ----------
    def record_route_failure(self, err):
        self.route_failures.append(err)

    def all_discoveries(self):
        return [d for node in self.G.values() for d in node.discoveries]
