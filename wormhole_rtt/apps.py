import logging

from wormhole_rtt.rtt import RttMeanDeviation

logger = logging.getLogger(__name__)


class UdpEchoServer:
    """Renvoie chaque datagramme reçu à son émetteur"""
    def __init__(self, node, port=9):
        self.node = node
        self.port = port
        self.received = 0
        node.bind(port, self)

    def on_receive(self, msg):
        self.received += 1
        self.node.send(msg.src_id, msg.size, src_port=self.port, dst_port=msg.src_port, payload=msg.payload)

    def on_send_failed(self, msg, err):
        logger.info("echo server on node %s could not answer %s: %s", self.node.id, msg.dest_id, err)


class UdpEchoClient:
    """
    Envoie max_packets datagrammes vers dest et mesure le RTT de chaque écho
    La date d'envoi est gardée par numéro de séquence, l'écho est associé à son propre envoi
    """
    def __init__(self, node, dest_id, dest_port=9, max_packets=1, interval=1.0, packet_size=1024,
                 local_port=49153, alpha=0.125, beta=0.25, k=4.0):
        self.node = node
        self.env = node.env
        self.dest_id = dest_id
        self.dest_port = dest_port
        self.max_packets = max_packets
        self.interval = interval
        self.packet_size = packet_size
        self.local_port = local_port

        self.sent = 0
        self.failures = []
        self.send_times = {}  # seq -> date d'envoi
        self.rtts = []        # [(t_recv, rtt)]
        self.rtt_estimator = RttMeanDeviation(alpha, beta, k)

        node.bind(local_port, self)

    def start(self, at=0.0):
        return self.env.process(self._run(at))

    def _run(self, at):
        if at > self.env.now:
            yield self.env.timeout(at - self.env.now)
        for seq in range(self.max_packets):
            self.send_times[seq] = self.env.now
            self.sent += 1
            self.node.send(self.dest_id, self.packet_size, src_port=self.local_port,
                           dst_port=self.dest_port, payload=seq)
            logger.info("t=%.4f echo client %s: packet %d sent to %s", self.env.now, self.node.id, seq, self.dest_id)
            yield self.env.timeout(self.interval)

    def on_receive(self, msg):
        t_sent = self.send_times.pop(msg.payload, None)
        if t_sent is None:
            return
        rtt = self.env.now - t_sent
        self.rtts.append((self.env.now, rtt))
        self.rtt_estimator.record_measurement(rtt, key=(self.node.id, self.dest_id), timestamp=self.env.now)
        logger.info("t=%.4f echo client %s: reply %s with rtt %.6f", self.env.now, self.node.id, msg.payload, rtt)

    def on_send_failed(self, msg, err):
        self.failures.append(err)
        self.send_times.pop(msg.payload, None)
