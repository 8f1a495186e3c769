class RttSample:
    def __init__(self, key, duration, timestamp):
        self.key = key
        """ route (dest, next_hop) ou voisin concerné par la mesure """

        self.duration = duration
        """ durée aller-retour mesurée """

        self.timestamp = timestamp
        """ date de la mesure """

    def __repr__(self):
        return f"RttSample({self.key}, rtt={self.duration:.6f}, t={self.timestamp:.4f})"


class RttMeanDeviation:
    """
    Estimateur RTT "à la TCP" : moyenne lissée (SRTT) + écart moyen lissé
    Le premier échantillon initialise l'estimation, les suivants la lissent
    Pas de reset pendant une simulation
    """
    def __init__(self, alpha=0.125, beta=0.25, k=4.0, initial_deviation=None):
        self.alpha = alpha
        self.beta = beta
        self.k = k
        self.initial_deviation = initial_deviation

        self.mean = None
        self.deviation = None
        self.samples = []

    @property
    def nb_samples(self):
        return len(self.samples)

    def record_measurement(self, sample, key=None, timestamp=0.0):
        if sample < 0:
            raise ValueError(f"negative rtt sample: {sample}")

        if self.mean is None:
            self.mean = sample
            self.deviation = sample / 2 if self.initial_deviation is None else self.initial_deviation
        else:
            # l'écart est mis à jour avec l'ancienne moyenne, comme dans TCP
            self.deviation = (1 - self.beta) * self.deviation + self.beta * abs(sample - self.mean)
            self.mean = (1 - self.alpha) * self.mean + self.alpha * sample

        self.samples.append(RttSample(key, sample, timestamp))
        return self.mean

    def get_estimate(self):
        return self.mean

    def get_estimate_bound(self):
        if self.mean is None:
            return None
        return self.mean + self.k * self.deviation


class RttTable:
    """Un estimateur par clé de route, créé à la première mesure"""
    def __init__(self, alpha=0.125, beta=0.25, k=4.0):
        self.alpha = alpha
        self.beta = beta
        self.k = k
        self.estimators = {}  # key -> RttMeanDeviation

    def get(self, key):
        if key not in self.estimators:
            self.estimators[key] = RttMeanDeviation(self.alpha, self.beta, self.k)
        return self.estimators[key]

    def record(self, key, sample, timestamp):
        est = self.get(key)
        est.record_measurement(sample, key=key, timestamp=timestamp)
        return est

    def all_samples(self):
        return [s for est in self.estimators.values() for s in est.samples]
