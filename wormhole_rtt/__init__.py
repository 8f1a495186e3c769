from wormhole_rtt.config import PHY_MODES, SimulationConfig
from wormhole_rtt.detector import ACCEPTED, SUSPECTED, DetectionVerdict, NullDetector, RttWormholeDetector
from wormhole_rtt.errors import ConfigurationError, NoRouteFound, WormholeRttError
from wormhole_rtt.flowmon import FlowKey, FlowMonitor, FlowRecord
from wormhole_rtt.network import Message, Network
from wormhole_rtt.node import Node, RouteEntry, RouteState
from wormhole_rtt.rtt import RttMeanDeviation, RttSample, RttTable
from wormhole_rtt.simulation import Simulation, run_comparison
from wormhole_rtt.wormhole import WormholeTunnel
