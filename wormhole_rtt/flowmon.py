import logging
import xml.etree.ElementTree as ET
from collections import namedtuple

import pandas as pd

logger = logging.getLogger(__name__)

TX = "tx"
RX = "rx"

FlowKey = namedtuple("FlowKey", ["src_id", "dest_id", "protocol", "port"])


class FlowRecord:
    def __init__(self, flow_id, key):
        self.flow_id = flow_id
        self.key = key

        self.tx_bytes = 0
        self.rx_bytes = 0
        self.tx_packets = 0
        self.rx_packets = 0
        self.lost_packets = 0
        self.delay_sum = 0.0

        self.time_first_tx = None
        self.time_last_tx = None
        self.time_first_rx = None
        self.time_last_rx = None

    def throughput(self):
        """Débit en bit/s entre la première émission et la dernière réception, 0 si non défini"""
        if self.rx_bytes == 0 or self.time_first_tx is None or self.time_last_rx is None:
            return 0.0
        elapsed = self.time_last_rx - self.time_first_tx
        if elapsed <= 0:
            return 0.0
        return self.rx_bytes * 8 / elapsed

    def mean_delay(self):
        return self.delay_sum / self.rx_packets if self.rx_packets else None


class FlowMonitor:
    """
    Compte octets / paquets par flux (src, dest, protocole, port)
    Les enregistrements sont créés à la première observation puis en lecture seule après la simulation
    """
    def __init__(self):
        self.flows = {}      # FlowKey -> FlowRecord
        self.in_flight = {}  # packet_id -> (FlowKey, t_tx)

    def _record(self, flow_key):
        rec = self.flows.get(flow_key)
        if rec is None:
            rec = FlowRecord(len(self.flows) + 1, flow_key)
            self.flows[flow_key] = rec
        return rec

    def observe(self, flow_key, byte_count, direction, timestamp, packet_id=None):
        rec = self._record(flow_key)

        if direction == TX:
            rec.tx_bytes += byte_count
            rec.tx_packets += 1
            if rec.time_first_tx is None:
                rec.time_first_tx = timestamp
            rec.time_last_tx = timestamp
            if packet_id is not None:
                self.in_flight[packet_id] = (flow_key, timestamp)

        elif direction == RX:
            rec.rx_bytes += byte_count
            rec.rx_packets += 1
            if rec.time_first_rx is None:
                rec.time_first_rx = timestamp
            rec.time_last_rx = timestamp
            if packet_id is not None and packet_id in self.in_flight:
                _, t_tx = self.in_flight.pop(packet_id)
                rec.delay_sum += timestamp - t_tx

        else:
            raise ValueError(f"unknown direction {direction!r}")
        return rec

    def check_for_lost_packets(self, now, max_delay=10.0):
        """Les paquets en vol depuis plus de max_delay sont comptés comme perdus"""
        lost = 0
        for packet_id, (flow_key, t_tx) in list(self.in_flight.items()):
            if now - t_tx > max_delay:
                self.flows[flow_key].lost_packets += 1
                del self.in_flight[packet_id]
                lost += 1
        if lost:
            logger.info("t=%.4f %d packets declared lost", now, lost)
        return lost

    def report(self):
        rows = []
        for key, rec in self.flows.items():
            bps = rec.throughput()
            rows.append({
                "flow_id": rec.flow_id,
                "src_id": key.src_id,
                "dest_id": key.dest_id,
                "protocol": key.protocol,
                "port": key.port,
                "tx_bytes": rec.tx_bytes,
                "rx_bytes": rec.rx_bytes,
                "tx_packets": rec.tx_packets,
                "rx_packets": rec.rx_packets,
                "lost_packets": rec.lost_packets,
                "time_first_tx": rec.time_first_tx,
                "time_last_rx": rec.time_last_rx,
                "mean_delay": rec.mean_delay(),
                "throughput_bps": bps,
                "throughput_mbps": bps / 1e6,
            })
        return rows

    def to_dataframe(self):
        return pd.DataFrame(self.report())

    def to_csv(self, path):
        df = self.to_dataframe()
        df.to_csv(path, index=False)
        return df

    def serialize_to_xml(self, path):
        """Trace des flux en fin de simulation, dans le format du FlowMonitor de ns-3"""
        root = ET.Element("FlowMonitor")
        stats = ET.SubElement(root, "FlowStats")
        classifier = ET.SubElement(root, "Ipv4FlowClassifier")

        def ns(t):
            return "" if t is None else f"{t * 1e9:+.1f}ns"

        for key, rec in self.flows.items():
            ET.SubElement(stats, "Flow", {
                "flowId": str(rec.flow_id),
                "timeFirstTxPacket": ns(rec.time_first_tx),
                "timeFirstRxPacket": ns(rec.time_first_rx),
                "timeLastTxPacket": ns(rec.time_last_tx),
                "timeLastRxPacket": ns(rec.time_last_rx),
                "delaySum": ns(rec.delay_sum),
                "txBytes": str(rec.tx_bytes),
                "rxBytes": str(rec.rx_bytes),
                "txPackets": str(rec.tx_packets),
                "rxPackets": str(rec.rx_packets),
                "lostPackets": str(rec.lost_packets),
            })
            ET.SubElement(classifier, "Flow", {
                "flowId": str(rec.flow_id),
                "sourceAddress": str(key.src_id),
                "destinationAddress": str(key.dest_id),
                "protocol": str(key.protocol),
                "destinationPort": str(key.port),
            })

        tree = ET.ElementTree(root)
        tree.write(path, encoding="utf-8", xml_declaration=True)
        return tree
