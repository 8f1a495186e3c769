import logging
from enum import Enum

import simpy

from wormhole_rtt.errors import NoRouteFound
from wormhole_rtt.flowmon import RX, TX, FlowKey
from wormhole_rtt.network import PROBE_REPLY_SIZE, PROBE_SIZE, RREP_SIZE, RREQ_SIZE, Message
from wormhole_rtt.rtt import RttTable

logger = logging.getLogger(__name__)


class RouteState(Enum):
    NO_ROUTE = "no-route"
    DISCOVERING = "discovering"
    ACTIVE = "active"
    EXPIRED = "expired"


class RouteEntry:
    def __init__(self, dest, next_hop, hop_count, seq_num, updated_at, expiry):
        self.dest = dest
        self.next_hop = next_hop
        self.hop_count = hop_count
        self.seq_num = seq_num
        self.updated_at = updated_at
        self.expiry = expiry
        self.valid = True
        """ False si la route a expiré ou a été rejetée, on garde quand même le seq_num """

    def __repr__(self):
        return (f"RouteEntry(dest={self.dest}, next_hop={self.next_hop}, hops={self.hop_count}, "
                f"seq={self.seq_num}, valid={self.valid})")


class PendingRequest:
    """
    Découverte en cours vers dest
    Chaque tentative garde sa propre date d'envoi, la RREP est associée par request_id
    """
    def __init__(self, dest, excluded=()):
        self.dest = dest
        self.excluded = set(excluded)
        self.attempts = {}  # request_id -> date d'envoi de la RREQ
        self.retries = 0
        self.timer = None
        self.candidate = None
        """ RREP retenue, la route n'est installée qu'après le verdict de la contre-mesure """


class Node:
    def __init__(self, env, node_id, pos, network):
        self.env = env
        self.id = node_id
        self.pos = pos
        self.network = network
        self.cfg = network.cfg

        self.malicious = False
        """ True pour les extrémités du wormhole : elles ignorent les exclusions des RREQ """

        self.routing_table = {}  # dest -> RouteEntry
        self.seq_num = 0
        self.rreq_id = 0
        self.probe_id = 0
        self.data_seq = 0

        self.pending = simpy.Store(env)

        self.seen = set()              # (src_id, request_id) déjà traités
        self.pending_requests = {}     # dest -> PendingRequest
        self.to_be_sent = {}           # dest -> [data...]
        self.suspects = {}             # dest -> {next_hop...} rejetés par la contre-mesure
        self.ports = {}                # port -> application
        self.probes = {}               # probe_id -> event déclenché par la PROBE_REPLY

        self.rtt = RttTable(self.cfg.rtt_alpha, self.cfg.rtt_beta, self.cfg.rtt_k)
        self.discoveries = []
        """ une entrée par RREP reçue en tant que source : route, RTT, verdict """

        self.env.process(self._process())

    # --------- Interface événements ----------
    def on_receive(self, msg):
        self.pending.put(msg)

    def on_send_complete(self, msg):
        if msg.typ == "DATA" and msg.src_id == self.id and self.network.flowmon is not None:
            self.network.flowmon.observe(self._flow_key(msg), msg.size, TX, self.env.now,
                                         packet_id=(msg.src_id, msg.data_seq))

    def bind(self, port, app):
        self.ports[port] = app

    def _process(self):
        while True:
            msg = yield self.pending.get()
            yield self.env.timeout(self.cfg.processing_delay)

            if msg.typ == "RREQ":
                self._handle_rreq(msg)
            elif msg.typ == "RREP":
                self._handle_rrep(msg)
            elif msg.typ == "DATA":
                self._handle_data(msg)
            elif msg.typ in ("PROBE", "PROBE_REPLY"):
                self._handle_probe(msg)

    # --------- Table de routage ----------
    def route_state(self, dest):
        if dest in self.pending_requests:
            return RouteState.DISCOVERING
        entry = self.routing_table.get(dest)
        if entry is None:
            return RouteState.NO_ROUTE
        if entry.valid and entry.expiry >= self.env.now:
            return RouteState.ACTIVE
        return RouteState.EXPIRED

    def _lookup(self, dest, refresh=True):
        entry = self.routing_table.get(dest)
        if entry is None or not entry.valid:
            return None
        if entry.expiry < self.env.now:
            entry.valid = False
            logger.info("t=%.4f node %s: route to %s expired", self.env.now, self.id, dest)
            return None
        if refresh:
            entry.expiry = self.env.now + self.cfg.active_route_timeout
        return entry

    def _update_route(self, dest, next_hop, hop_count, seq_num):
        cur = self.routing_table.get(dest)

        if cur is None or seq_num > cur.seq_num or (seq_num == cur.seq_num and hop_count < cur.hop_count):
            self.routing_table[dest] = RouteEntry(dest, next_hop, hop_count, seq_num, self.env.now,
                                                  self.env.now + self.cfg.active_route_timeout)
            return True

        self.network.stale_updates += 1
        logger.info("t=%.4f node %s: stale update for %s rejected (seq %s/%s, hops %s/%s)",
                    self.env.now, self.id, dest, seq_num, cur.seq_num, hop_count, cur.hop_count)
        return False

    def _discard_route(self, dest, next_hop):
        entry = self.routing_table.get(dest)
        if entry is not None and entry.next_hop == next_hop:
            entry.valid = False

    # --------- Envoi ----------
    def send(self, dest_id, size, src_port=None, dst_port=None, payload=None):
        self.data_seq += 1
        msg = Message("DATA", self.id, dest_id, size, src_port=src_port, dst_port=dst_port,
                      data_seq=self.data_seq, payload=payload, t_origin=self.env.now)
        self.network.messages_initiated += 1

        if self._lookup(dest_id) is not None:
            self._forward_data(msg)
        else:
            self.to_be_sent.setdefault(dest_id, []).append(msg)
            if dest_id not in self.pending_requests:
                self._start_discovery(dest_id)
        return msg

    # --------- Découverte de route ----------
    def _start_discovery(self, dest_id):
        pending = PendingRequest(dest_id, self.suspects.get(dest_id, ()))
        self.pending_requests[dest_id] = pending
        self._send_rreq(pending)
        return pending

    def _send_rreq(self, pending):
        self.seq_num += 1
        self.rreq_id += 1
        self.network.rreq_sent += 1

        pending.attempts[self.rreq_id] = self.env.now
        self.seen.add((self.id, self.rreq_id))

        rreq = Message(
            "RREQ",
            src_id=self.id,
            dest_id=pending.dest,
            size=RREQ_SIZE,
            request_id=self.rreq_id,
            src_seq=self.seq_num,
            t_origin=self.env.now,
            excluded=pending.excluded
        )
        logger.debug("t=%.6f node %s: RREQ %s for %s (excluded %s)",
                     self.env.now, self.id, self.rreq_id, pending.dest, sorted(pending.excluded))
        self.network.broadcast(self, rreq)
        pending.timer = self.env.process(self._retry_timer(pending))

    def _retry_timer(self, pending):
        try:
            yield self.env.timeout(self.cfg.net_traversal_time)
        except simpy.Interrupt:
            return

        if self.pending_requests.get(pending.dest) is not pending:
            return

        if pending.retries < self.cfg.rreq_retries:
            pending.retries += 1
            logger.info("t=%.4f node %s: no reply for %s, retry %d/%d",
                        self.env.now, self.id, pending.dest, pending.retries, self.cfg.rreq_retries)
            self._send_rreq(pending)
        else:
            self._discovery_failed(pending)

    def _cancel_timer(self, pending):
        timer = pending.timer
        if timer is not None and timer.is_alive and timer is not self.env.active_process:
            timer.interrupt("reply received")
        pending.timer = None

    def _discovery_failed(self, pending):
        del self.pending_requests[pending.dest]
        err = NoRouteFound(self.id, pending.dest, len(pending.attempts))
        logger.warning("t=%.4f node %s: %s", self.env.now, self.id, err)
        self.network.record_route_failure(err)

        for msg in self.to_be_sent.pop(pending.dest, []):
            self.network.data_dropped += 1
            app = self.ports.get(msg.src_port)
            if app is not None:
                app.on_send_failed(msg, err)

    def _handle_rreq(self, rreq):
        # ne jamais ré-accepter un RREQ qu'on a émis
        if rreq.src_id == self.id:
            return

        rreq.hop_count += 1

        # les noeuds honnêtes respectent les exclusions demandées par la source
        if not self.malicious and (self.id in rreq.excluded or rreq.excluded.intersection(rreq.path)):
            self.network.excluded_dropped += 1
            logger.debug("t=%.6f node %s: RREQ %s crosses excluded nodes %s",
                         self.env.now, self.id, rreq.request_id, sorted(rreq.excluded))
            return

        key = (rreq.src_id, rreq.request_id)
        if key in self.seen:
            self.network.duplicates_dropped += 1
            logger.debug("t=%.6f node %s: duplicate RREQ %s dropped", self.env.now, self.id, key)
            return
        self.seen.add(key)

        # route inverse vers la source
        self._update_route(rreq.src_id, rreq.prev_hop, rreq.hop_count, rreq.src_seq)

        if self.id == rreq.dest_id:
            self._send_rrep(rreq)
            return

        rreq.prev_hop = self.id
        rreq.path.append(self.id)
        self.network.rreq_forwarded += 1
        self.network.broadcast(self, rreq)

    def _send_rrep(self, rreq):
        self.seq_num += 1
        self.network.rrep_sent += 1

        rrep = Message(
            "RREP",
            src_id=self.id,
            dest_id=rreq.src_id,
            size=RREP_SIZE,
            request_id=rreq.request_id,
            src_seq=self.seq_num,
            t_origin=rreq.t_origin
        )
        self.network.unicast(self, rreq.prev_hop, rrep)

    def _handle_rrep(self, rrep):
        rrep.hop_count += 1

        if self.id == rrep.dest_id:
            self._complete_discovery(rrep)
            return

        # route vers la destination (celui qui a envoyé ce RREP)
        self._update_route(rrep.src_id, rrep.prev_hop, rrep.hop_count, rrep.src_seq)

        reverse = self._lookup(rrep.dest_id)
        if reverse is None:
            logger.info("t=%.4f node %s: no reverse route to %s, RREP dropped", self.env.now, self.id, rrep.dest_id)
            return

        rrep.prev_hop = self.id
        self.network.rrep_forwarded += 1
        self.network.unicast(self, reverse.next_hop, rrep)

    def _complete_discovery(self, rrep):
        dest = rrep.src_id
        pending = self.pending_requests.get(dest)
        if pending is None or pending.candidate is not None or rrep.request_id not in pending.attempts:
            logger.debug("t=%.6f node %s: unmatched RREP %s from %s ignored",
                         self.env.now, self.id, rrep.request_id, dest)
            return

        self._cancel_timer(pending)
        pending.candidate = rrep

        rtt = self.env.now - pending.attempts[rrep.request_id]
        estimator = self.rtt.record((dest, rrep.prev_hop), rtt, self.env.now)

        if self.network.detector.needs_samples(estimator):
            self.env.process(self._probe_route(pending, rtt))
        else:
            self._decide_route(pending, rtt)

    def _probe_route(self, pending, rtt):
        """
        Mesure d'autres allers-retours sur la route candidate avant le verdict
        Une sonde à la fois, chaque PROBE_REPLY alimente l'estimateur de (dest, next_hop)
        """
        next_hop = pending.candidate.prev_hop
        route_key = (pending.dest, next_hop)
        estimator = self.rtt.get(route_key)
        lost = 0

        while self.network.detector.needs_samples(estimator) and lost <= self.cfg.rreq_retries:
            self.probe_id += 1
            probe_id = self.probe_id
            t_sent = self.env.now
            probe = Message("PROBE", self.id, pending.dest, PROBE_SIZE, request_id=probe_id, t_origin=t_sent)

            reply = self.env.event()
            self.probes[probe_id] = reply
            self.network.probes_sent += 1
            if not self.network.unicast(self, next_hop, probe):
                del self.probes[probe_id]
                break

            yield reply | self.env.timeout(self.cfg.net_traversal_time)
            del self.probes[probe_id]

            if reply.triggered:
                self.rtt.record(route_key, self.env.now - t_sent, self.env.now)
            else:
                lost += 1
                self.network.probes_lost += 1
                logger.info("t=%.4f node %s: probe %d to %s via %s lost",
                            self.env.now, self.id, probe_id, pending.dest, next_hop)

        self._decide_route(pending, rtt)

    def _decide_route(self, pending, rtt):
        rrep = pending.candidate
        dest = pending.dest
        if self.pending_requests.get(dest) is pending:
            del self.pending_requests[dest]

        route_key = (dest, rrep.prev_hop)
        estimator = self.rtt.get(route_key)
        verdict = self.network.detector.evaluate(route_key, rrep.hop_count, estimator)

        self.discoveries.append({
            "t": self.env.now,
            "dest": dest,
            "next_hop": rrep.prev_hop,
            "hop_count": rrep.hop_count,
            "rtt": rtt,
            "srtt": estimator.get_estimate(),
            "srtt_bound": verdict.estimate_bound,
            "nb_samples": estimator.nb_samples,
            "verdict": verdict.classification,
        })

        if verdict.suspected:
            self.network.suspected_routes += 1
            logger.warning("t=%.4f node %s: route to %s via %s suspected (srtt %.6f < expected %.6f for %d hops, "
                           "%d samples)", self.env.now, self.id, dest, rrep.prev_hop, verdict.observed_rtt,
                           verdict.expected_rtt, rrep.hop_count, verdict.nb_samples)
            self.suspects.setdefault(dest, set()).add(rrep.prev_hop)
            self._discard_route(dest, rrep.prev_hop)
            if self.to_be_sent.get(dest):
                self._start_discovery(dest)
            return

        self._update_route(dest, rrep.prev_hop, rrep.hop_count, rrep.src_seq)
        logger.info("t=%.4f node %s: route to %s via %s (%d hops, srtt %.6f)",
                    self.env.now, self.id, dest, rrep.prev_hop, rrep.hop_count, estimator.get_estimate())

        for msg in self.to_be_sent.pop(dest, []):
            self._forward_data(msg)

    def _handle_probe(self, msg):
        msg.hop_count += 1

        if msg.dest_id != self.id:
            self._forward_probe(msg)
        elif msg.typ == "PROBE":
            reply = Message("PROBE_REPLY", self.id, msg.src_id, PROBE_REPLY_SIZE,
                            request_id=msg.request_id, t_origin=msg.t_origin)
            self._forward_probe(reply)
        else:
            event = self.probes.get(msg.request_id)
            if event is not None and not event.triggered:
                event.succeed(msg)

    def _forward_probe(self, msg):
        # les sondes suivent les tables de routage comme les données
        entry = self._lookup(msg.dest_id)
        if entry is None:
            logger.info("t=%.4f node %s: no route to %s, %s dropped", self.env.now, self.id, msg.dest_id, msg.typ)
            return False
        msg.prev_hop = self.id
        return self.network.unicast(self, entry.next_hop, msg)

    # --------- DATA ----------
    def _flow_key(self, msg):
        return FlowKey(msg.src_id, msg.dest_id, "UDP", msg.dst_port)

    def _forward_data(self, data):
        entry = self._lookup(data.dest_id)
        if entry is None:
            self.network.data_dropped += 1
            logger.info("t=%.4f node %s: no route to %s, data dropped", self.env.now, self.id, data.dest_id)
            return False

        if data.src_id == self.id:
            self.network.messages_sent += 1
        else:
            self.network.messages_forwarded += 1

        data.prev_hop = self.id
        if not self.network.unicast(self, entry.next_hop, data):
            entry.valid = False
            self.network.data_dropped += 1
            return False
        return True

    def _handle_data(self, data):
        if data.dest_id == self.id:
            self.network.messages_received += 1
            if self.network.flowmon is not None:
                self.network.flowmon.observe(self._flow_key(data), data.size, RX, self.env.now,
                                             packet_id=(data.src_id, data.data_seq))
            app = self.ports.get(data.dst_port)
            if app is not None:
                app.on_receive(data)
        else:
            self._forward_data(data)
