class WormholeRttError(Exception):
    """Erreur de base du simulateur"""


class ConfigurationError(WormholeRttError):
    """
    Configuration invalide (extrémités du tunnel inconnues, mode PHY inconnu...)
    Levée avant le démarrage de l'horloge : c'est la seule erreur fatale
    """


class NoRouteFound(WormholeRttError):
    """
    La découverte de route a épuisé ses tentatives
    Non fatale : remontée à l'application émettrice comme un échec de livraison
    """

    def __init__(self, origin, dest, attempts):
        self.origin = origin
        self.dest = dest
        self.attempts = attempts
        super().__init__(f"no route from {origin} to {dest} after {attempts} attempts")
