from wormhole_rtt.errors import ConfigurationError


# mode PHY -> (débit en bit/s, préambule PLCP en s, slot en s, SIFS en s)
PHY_MODES = {
    "DsssRate1Mbps": (1e6, 192e-6, 20e-6, 10e-6),
    "DsssRate2Mbps": (2e6, 192e-6, 20e-6, 10e-6),
    "DsssRate5_5Mbps": (5.5e6, 192e-6, 20e-6, 10e-6),
    "DsssRate11Mbps": (11e6, 192e-6, 20e-6, 10e-6),
    "ErpOfdmRate6Mbps": (6e6, 20e-6, 9e-6, 10e-6),
    "ErpOfdmRate9Mbps": (9e6, 20e-6, 9e-6, 10e-6),
    "ErpOfdmRate12Mbps": (12e6, 20e-6, 9e-6, 10e-6),
    "ErpOfdmRate18Mbps": (18e6, 20e-6, 9e-6, 10e-6),
    "ErpOfdmRate24Mbps": (24e6, 20e-6, 9e-6, 10e-6),
    "ErpOfdmRate36Mbps": (36e6, 20e-6, 9e-6, 10e-6),
    "ErpOfdmRate48Mbps": (48e6, 20e-6, 9e-6, 10e-6),
    "ErpOfdmRate54Mbps": (54e6, 20e-6, 9e-6, 10e-6),
}


class SimulationConfig:
    """
    Un seul endroit pour TOUS les paramètres.
    On instancie la config dans le main et on la passe à Simulation(cfg) / Network(cfg).
    """
    def __init__(
        self,
        # topologie
        nb_nodes=6,
        spacing=100.0,
        max_dist=120.0,
        # attaque
        wormhole_enabled=True,
        wormhole_endpoints=(0, 5),
        tunnel_latency=1e-6,
        # couche physique
        phy_mode="DsssRate1Mbps",
        cw_min=15,
        loss_prob=0.0,
        processing_delay=1e-4,
        # routage
        active_route_timeout=3.0,
        net_traversal_time=0.5,
        rreq_retries=2,
        # estimateur RTT (mêmes gains que TCP)
        rtt_alpha=0.125,
        rtt_beta=0.25,
        rtt_k=4.0,
        # contre-mesure
        countermeasure_enabled=True,
        per_hop_rtt=None,               # None => déduit du modèle de lien
        tolerance=0.1,
        min_samples=16,                 # RREP + sondes sur la route candidate
        # application écho
        client_node=1,
        server_node=4,
        echo_port=9,
        client_start=2.0,
        max_packets=1,
        interval=1.0,
        packet_size=1024,
        # simulation
        flow_monitor_enabled=True,
        duration=100.0,
        seed=12345
    ):
        self.nb_nodes = nb_nodes
        self.spacing = spacing
        self.max_dist = max_dist

        self.wormhole_enabled = wormhole_enabled
        self.wormhole_endpoints = tuple(wormhole_endpoints)
        self.tunnel_latency = tunnel_latency

        self.phy_mode = phy_mode
        self.cw_min = cw_min
        self.loss_prob = loss_prob
        self.processing_delay = processing_delay

        self.active_route_timeout = active_route_timeout
        self.net_traversal_time = net_traversal_time
        self.rreq_retries = rreq_retries

        self.rtt_alpha = rtt_alpha
        self.rtt_beta = rtt_beta
        self.rtt_k = rtt_k

        self.countermeasure_enabled = countermeasure_enabled
        self.per_hop_rtt = per_hop_rtt
        self.tolerance = tolerance
        self.min_samples = min_samples

        self.client_node = client_node
        self.server_node = server_node
        self.echo_port = echo_port
        self.client_start = client_start
        self.max_packets = max_packets
        self.interval = interval
        self.packet_size = packet_size

        self.flow_monitor_enabled = flow_monitor_enabled
        self.duration = duration
        self.seed = seed

    def copy(self, **changes):
        """Renvoie une copie de la config avec quelques paramètres modifiés"""
        params = dict(vars(self))
        params.update(changes)
        return SimulationConfig(**params)

    def validate(self):
        """Vérifie la config avant de lancer l'horloge, lève ConfigurationError sinon"""
        if self.nb_nodes < 2:
            raise ConfigurationError(f"need at least 2 nodes, got {self.nb_nodes}")
        if self.spacing <= 0 or self.max_dist <= 0:
            raise ConfigurationError("spacing and max_dist must be positive")
        if self.duration <= 0:
            raise ConfigurationError(f"duration must be positive, got {self.duration}")
        if self.phy_mode not in PHY_MODES:
            raise ConfigurationError(f"unknown phy mode {self.phy_mode!r}")
        if not 0.0 <= self.loss_prob < 1.0:
            raise ConfigurationError(f"loss_prob must be in [0, 1), got {self.loss_prob}")
        if not 0.0 <= self.tolerance < 1.0:
            raise ConfigurationError(f"tolerance must be in [0, 1), got {self.tolerance}")
        if self.min_samples < 0 or self.rreq_retries < 0:
            raise ConfigurationError("min_samples and rreq_retries must be >= 0")

        for name in ("client_node", "server_node"):
            nid = getattr(self, name)
            if not 0 <= nid < self.nb_nodes:
                raise ConfigurationError(f"{name}={nid} is not a node id")
        if self.client_node == self.server_node:
            raise ConfigurationError("client and server must be different nodes")

        if self.wormhole_enabled:
            if len(self.wormhole_endpoints) != 2:
                raise ConfigurationError("a wormhole needs exactly two endpoints")
            a, b = self.wormhole_endpoints
            if a == b:
                raise ConfigurationError(f"wormhole endpoints must differ, got {a} twice")
            for nid in (a, b):
                if not 0 <= nid < self.nb_nodes:
                    raise ConfigurationError(f"wormhole endpoint {nid} is not a node id")
            if self.tunnel_latency < 0:
                raise ConfigurationError("tunnel latency must be >= 0")
        return self
