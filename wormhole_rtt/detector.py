import logging

import numpy as np

logger = logging.getLogger(__name__)

ACCEPTED = "accepted"
SUSPECTED = "suspected-wormhole"


class DetectionVerdict:
    def __init__(self, route_key, classification, observed_rtt, expected_rtt, hop_count, nb_samples, reason="",
                 estimate_bound=None):
        self.route_key = route_key
        """ (dest, next_hop) de la route évaluée """

        self.classification = classification
        """ ACCEPTED ou SUSPECTED """

        self.observed_rtt = observed_rtt
        """ SRTT de la route au moment de l'évaluation (None si aucune mesure) """

        self.expected_rtt = expected_rtt
        """ RTT attendu pour le nombre de sauts annoncé """

        self.estimate_bound = estimate_bound
        """ SRTT + k·écart : plafond des RTT encore plausibles pour cette route """

        self.hop_count = hop_count
        self.nb_samples = nb_samples
        self.reason = reason

    @property
    def suspected(self):
        return self.classification == SUSPECTED

    def __repr__(self):
        return (f"DetectionVerdict({self.route_key}, {self.classification}, hops={self.hop_count}, "
                f"observed={self.observed_rtt}, expected={self.expected_rtt})")


class Detector:
    """
    Interface de la contre-mesure : ne voit que les mesures observables
    (estimateur RTT + nombre de sauts annoncé), rien du tunnel
    """
    def __init__(self):
        self.history = []

    def evaluate(self, route_key, hop_count, estimator):
        raise NotImplementedError

    def needs_samples(self, estimator):
        """True si la route candidate doit encore être sondée avant de rendre un verdict"""
        return False

    def _record(self, verdict):
        self.history.append(verdict)
        return verdict


class NullDetector(Detector):
    """Contre-mesure désactivée : toutes les routes sont acceptées"""

    def evaluate(self, route_key, hop_count, estimator):
        observed = estimator.get_estimate() if estimator is not None else None
        return self._record(DetectionVerdict(route_key, ACCEPTED, observed, None, hop_count,
                                             estimator.nb_samples if estimator is not None else 0,
                                             reason="disabled",
                                             estimate_bound=estimator.get_estimate_bound() if estimator is not None else None))


class RttWormholeDetector(Detector):
    """
    Une route qui annonce hop_count sauts mais dont le RTT lissé est nettement
    plus court que per_hop_rtt * hop_count est suspectée de passer par un wormhole
    """
    def __init__(self, per_hop_rtt, tolerance=0.1, min_samples=16):
        super().__init__()
        self.per_hop_rtt = per_hop_rtt
        self.tolerance = tolerance
        self.min_samples = min_samples

    def expected_rtt(self, hop_count):
        return self.per_hop_rtt * hop_count

    def needs_samples(self, estimator):
        return estimator.nb_samples < self.min_samples

    def calibrate(self, samples):
        """
        Calibre le RTT par saut sur du trafic sans attaque
        samples : liste de (hop_count, rtt)
        """
        ratios = [rtt / hops for hops, rtt in samples if hops > 0]
        if not ratios:
            raise ValueError("cannot calibrate without baseline samples")
        self.per_hop_rtt = float(np.median(ratios))
        logger.info("calibrated per-hop rtt: %.6f s on %d samples (std %.6f)",
                    self.per_hop_rtt, len(ratios), float(np.std(ratios)))
        return self.per_hop_rtt

    def evaluate(self, route_key, hop_count, estimator):
        expected = self.expected_rtt(hop_count)
        nb = estimator.nb_samples if estimator is not None else 0

        if nb < self.min_samples or nb == 0:
            # pas assez de mesures : on laisse passer (fail-open)
            logger.debug("route %s: %d samples < %d, accepted by default", route_key, nb, self.min_samples)
            return self._record(DetectionVerdict(route_key, ACCEPTED, None if nb == 0 else estimator.get_estimate(),
                                                 expected, hop_count, nb, reason="insufficient-samples",
                                                 estimate_bound=None if nb == 0 else estimator.get_estimate_bound()))

        observed = estimator.get_estimate()
        bound = estimator.get_estimate_bound()
        if observed < expected * (1 - self.tolerance):
            return self._record(DetectionVerdict(route_key, SUSPECTED, observed, expected, hop_count, nb,
                                                 reason="rtt too short for hop count", estimate_bound=bound))

        return self._record(DetectionVerdict(route_key, ACCEPTED, observed, expected, hop_count, nb,
                                             reason="rtt consistent with hop count", estimate_bound=bound))
