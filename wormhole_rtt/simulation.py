import argparse
import logging

import matplotlib.pyplot as plt
import numpy as np

from wormhole_rtt.apps import UdpEchoClient, UdpEchoServer
from wormhole_rtt.config import PHY_MODES, SimulationConfig
from wormhole_rtt.detector import ACCEPTED
from wormhole_rtt.network import Network

logger = logging.getLogger(__name__)


class Simulation:
    def __init__(self, cfg):
        self.cfg = cfg.validate()
        """ configuration de la simulation (vérifiée avant de lancer l'horloge) """

        self.net = Network(cfg)

        # noeuds en ligne, espacés de cfg.spacing
        for i in range(cfg.nb_nodes):
            self.net.add_node(id=i, pos=(i * cfg.spacing, 0.0))

        self.tunnel = None
        if cfg.wormhole_enabled:
            a, b = cfg.wormhole_endpoints
            self.tunnel = self.net.install_wormhole(a, b, cfg.tunnel_latency)

        if cfg.countermeasure_enabled:
            self.net.enable_countermeasure()

        self.server = UdpEchoServer(self.net.G[cfg.server_node], port=cfg.echo_port)
        self.client = UdpEchoClient(
            self.net.G[cfg.client_node],
            dest_id=cfg.server_node,
            dest_port=cfg.echo_port,
            max_packets=cfg.max_packets,
            interval=cfg.interval,
            packet_size=cfg.packet_size,
            alpha=cfg.rtt_alpha,
            beta=cfg.rtt_beta,
            k=cfg.rtt_k
        )
        self.client.start(at=cfg.client_start)

    def run(self):
        self.net.env.run(until=self.cfg.duration)
        if self.net.flowmon is not None:
            self.net.flowmon.check_for_lost_packets(self.net.env.now)
        return self

    def route_path(self, src_id, dest_id):
        """Suit les next_hop des tables de routage (même expirées) de src à dest"""
        path = [src_id]
        current = src_id
        while current != dest_id and len(path) <= self.cfg.nb_nodes:
            entry = self.net.G[current].routing_table.get(dest_id)
            if entry is None:
                return None
            current = entry.next_hop
            path.append(current)
        return path if current == dest_id else None

    def uses_tunnel(self, path):
        if self.tunnel is None or path is None:
            return False
        return any(self.tunnel.peer(a) == b for a, b in zip(path, path[1:]))

    def get_metrics(self):
        client_node = self.net.G[self.cfg.client_node]
        server_id = self.cfg.server_node

        accepted = [d for d in client_node.discoveries if d["dest"] == server_id and d["verdict"] == ACCEPTED]
        last = accepted[-1] if accepted else None
        path = self.route_path(self.cfg.client_node, server_id) if last is not None else None
        echo_rtts = [rtt for _, rtt in self.client.rtts]

        return {
            "wormhole": self.cfg.wormhole_enabled,
            "countermeasure": self.cfg.countermeasure_enabled,
            "next_hop": last["next_hop"] if last else None,
            "hop_count": last["hop_count"] if last else None,
            "discovery_rtt": last["rtt"] if last else None,
            "path": path,
            "tunnel_used": self.uses_tunnel(path),
            "physical_hops": self.net.link.physical_hops(self.cfg.client_node, server_id),
            "suspected_routes": self.net.suspected_routes,
            "discoveries": len(client_node.discoveries),
            "echo_sent": self.client.sent,
            "echo_received": len(self.client.rtts),
            "echo_rtt_mean": float(np.mean(echo_rtts)) if echo_rtts else None,
            "echo_srtt": self.client.rtt_estimator.get_estimate(),
            "route_failures": len(self.net.route_failures),
            "rreq_sent": self.net.rreq_sent,
            "rreq_forwarded": self.net.rreq_forwarded,
            "rrep_sent": self.net.rrep_sent,
            "duplicates_dropped": self.net.duplicates_dropped,
            "excluded_dropped": self.net.excluded_dropped,
            "stale_updates": self.net.stale_updates,
            "msg_initiated": self.net.messages_initiated,
            "msg_recv": self.net.messages_received,
            "data_dropped": self.net.data_dropped,
            "tunnel_relayed": self.tunnel.relayed_packets if self.tunnel else 0,
            "probes_sent": self.net.probes_sent,
            "probes_lost": self.net.probes_lost,
            "duration": self.net.env.now,
        }

    def print_results(self):
        if self.net.flowmon is None:
            print("Flow monitor disabled")
            return
        for row in self.net.flowmon.report():
            print(f"Flow {row['flow_id']} ({row['src_id']} -> {row['dest_id']})")
            print(f"  Tx Bytes:   {row['tx_bytes']}")
            print(f"  Rx Bytes:   {row['rx_bytes']}")
            print(f"  Lost:       {row['lost_packets']}")
            print(f"  Throughput: {row['throughput_mbps']:.4f} Mbps")


## Comparaison attaque / contre-mesure ##

def calibrate_per_hop_rtt(cfg, nb_discoveries=10):
    """
    Lance une simulation sans attaque où chaque écho force une nouvelle découverte
    et renvoie le RTT par saut (médiane) mesuré
    """
    interval = cfg.active_route_timeout + 1.0
    base_cfg = cfg.copy(
        wormhole_enabled=False,
        countermeasure_enabled=False,
        max_packets=nb_discoveries,
        interval=interval,
        duration=cfg.client_start + nb_discoveries * interval + 5.0
    )
    sim = Simulation(base_cfg).run()
    sim.net.enable_countermeasure()
    samples = [(d["hop_count"], d["rtt"]) for d in sim.net.all_discoveries()]
    return sim.net.detector.calibrate(samples)


def run_comparison(cfg, calibrate=True, nb_discoveries=10):
    """Trois cas : sans attaque, attaque seule, attaque + contre-mesure"""
    per_hop_rtt = calibrate_per_hop_rtt(cfg, nb_discoveries) if calibrate else cfg.per_hop_rtt
    print(f"per-hop rtt baseline: {per_hop_rtt}")

    cases = {
        "baseline": cfg.copy(wormhole_enabled=False, countermeasure_enabled=False),
        "wormhole": cfg.copy(wormhole_enabled=True, countermeasure_enabled=False),
        "wormhole+rtt": cfg.copy(wormhole_enabled=True, countermeasure_enabled=True, per_hop_rtt=per_hop_rtt),
    }
    results = {}
    for name, case_cfg in cases.items():
        print(f"\nstarting {name} sim")
        sim = Simulation(case_cfg).run()
        results[name] = sim.get_metrics()
    return results


def print_comparison(results):
    keys = ["next_hop", "hop_count", "path", "tunnel_used", "discovery_rtt", "echo_rtt_mean",
            "suspected_routes", "echo_received", "route_failures", "rreq_sent", "probes_sent", "tunnel_relayed"]

    names = list(results)
    print(f"\n{'Métrique':<20}" + "".join(f"{n:<22}" for n in names))
    print("-" * (20 + 22 * len(names)))
    for key in keys:
        line = f"{key:<20}"
        for n in names:
            val = results[n][key]
            val_str = f"{val * 1000:.3f} ms" if isinstance(val, float) else str(val)
            line += f"{val_str:<22}"
        print(line)


def plot_rtt(results):
    names = list(results)
    discovery = [(results[n]["discovery_rtt"] or 0) * 1000 for n in names]
    echo = [(results[n]["echo_rtt_mean"] or 0) * 1000 for n in names]
    x = np.arange(len(names))

    fig, ax = plt.subplots(figsize=(7, 4))
    ax.bar(x - 0.2, discovery, width=0.4, label="RTT découverte")
    ax.bar(x + 0.2, echo, width=0.4, label="RTT écho")
    ax.set_xticks(x)
    ax.set_xticklabels(names)
    ax.set_ylabel("RTT (ms)")
    ax.set_title("Impact du wormhole sur le RTT de la route 1 -> 4")
    ax.legend()
    plt.tight_layout()
    plt.show()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Wormhole attack and RTT countermeasure on an AODV-like MANET")
    parser.add_argument("--wormhole", action=argparse.BooleanOptionalAction, default=True)
    parser.add_argument("--countermeasure", action=argparse.BooleanOptionalAction, default=True)
    parser.add_argument("--monitor", action=argparse.BooleanOptionalAction, default=True)
    parser.add_argument("--phy-mode", default="DsssRate1Mbps", choices=sorted(PHY_MODES))
    parser.add_argument("--duration", type=float, default=100.0)
    parser.add_argument("--nodes", type=int, default=6)
    parser.add_argument("--spacing", type=float, default=100.0)
    parser.add_argument("--xml", default=None, help="write the flow trace to this XML file")
    parser.add_argument("--compare", action="store_true", help="run baseline / attack / attack + countermeasure")
    parser.add_argument("--plot", action="store_true")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")

    cfg = SimulationConfig(
        nb_nodes=args.nodes,
        spacing=args.spacing,
        wormhole_enabled=args.wormhole,
        countermeasure_enabled=args.countermeasure,
        flow_monitor_enabled=args.monitor,
        phy_mode=args.phy_mode,
        duration=args.duration
    )

    if args.compare:
        results = run_comparison(cfg)
        print_comparison(results)
        if args.plot:
            plot_rtt(results)
        return results

    sim = Simulation(cfg).run()
    sim.print_results()
    if args.xml and sim.net.flowmon is not None:
        sim.net.flowmon.serialize_to_xml(args.xml)
    metrics = sim.get_metrics()
    print(f"\nRoute {cfg.client_node} -> {cfg.server_node}: {metrics['path']} "
          f"({metrics['hop_count']} hops, tunnel used: {metrics['tunnel_used']})")
    return metrics


if __name__ == "__main__":
    main()
