import pytest

from wormhole_rtt.detector import ACCEPTED, SUSPECTED, NullDetector, RttWormholeDetector
from wormhole_rtt.rtt import RttMeanDeviation


def estimator(*samples):
    est = RttMeanDeviation()
    for s in samples:
        est.record_measurement(s)
    return est


@pytest.mark.parametrize("hops", [2, 3, 5])
def test_near_zero_rtt_is_suspected(hops):
    det = RttWormholeDetector(per_hop_rtt=0.002, tolerance=0.2, min_samples=1)
    verdict = det.evaluate((4, 0), hops, estimator(1e-6))
    assert verdict.classification == SUSPECTED
    assert verdict.suspected
    assert verdict.expected_rtt == pytest.approx(0.002 * hops)


@pytest.mark.parametrize("hops", [1, 2, 3, 5])
def test_rtt_matching_baseline_is_accepted(hops):
    det = RttWormholeDetector(per_hop_rtt=0.002, tolerance=0.2, min_samples=1)
    verdict = det.evaluate((4, 2), hops, estimator(0.002 * hops))
    assert verdict.classification == ACCEPTED
    assert not verdict.suspected


def test_slower_than_expected_is_accepted():
    det = RttWormholeDetector(per_hop_rtt=0.002, min_samples=1)
    assert det.evaluate((4, 2), 3, estimator(0.02)).classification == ACCEPTED


def test_tolerance_boundary():
    det = RttWormholeDetector(per_hop_rtt=0.001, tolerance=0.25, min_samples=1)
    # seuil = 0.75 * 0.004 = 0.003
    assert det.evaluate("r", 4, estimator(0.0031)).classification == ACCEPTED
    assert det.evaluate("r", 4, estimator(0.0029)).classification == SUSPECTED


def test_insufficient_samples_fail_open():
    det = RttWormholeDetector(per_hop_rtt=0.002, min_samples=3)
    verdict = det.evaluate((4, 0), 3, estimator(1e-6, 1e-6))
    assert verdict.classification == ACCEPTED
    assert verdict.reason == "insufficient-samples"
    assert verdict.nb_samples == 2

    verdict = det.evaluate((4, 0), 3, estimator(1e-6, 1e-6, 1e-6))
    assert verdict.classification == SUSPECTED


def test_no_estimator_is_accepted():
    det = RttWormholeDetector(per_hop_rtt=0.002)
    assert det.evaluate((4, 0), 3, RttMeanDeviation()).classification == ACCEPTED


def test_history_is_kept():
    det = RttWormholeDetector(per_hop_rtt=0.002, min_samples=1)
    det.evaluate("a", 3, estimator(1e-6))
    det.evaluate("b", 3, estimator(0.006))
    assert [v.classification for v in det.history] == [SUSPECTED, ACCEPTED]


def test_calibrate_uses_median_per_hop():
    det = RttWormholeDetector(per_hop_rtt=None)
    per_hop = det.calibrate([(3, 0.006), (2, 0.0042), (3, 0.0066), (1, 0.1), (2, 0.0)])
    assert per_hop == pytest.approx(0.0021)
    assert det.expected_rtt(3) == pytest.approx(0.0063)


def test_calibrate_without_samples():
    det = RttWormholeDetector(per_hop_rtt=0.002)
    with pytest.raises(ValueError):
        det.calibrate([])
    with pytest.raises(ValueError):
        det.calibrate([(0, 0.001)])


def test_null_detector_accepts_everything():
    det = NullDetector()
    verdict = det.evaluate((4, 0), 3, estimator(1e-9))
    assert verdict.classification == ACCEPTED
    assert verdict.reason == "disabled"


def test_needs_samples_until_min_samples():
    det = RttWormholeDetector(per_hop_rtt=0.002, min_samples=3)
    est = RttMeanDeviation()
    assert det.needs_samples(est)
    est.record_measurement(0.006)
    est.record_measurement(0.006)
    assert det.needs_samples(est)
    est.record_measurement(0.006)
    assert not det.needs_samples(est)
    assert not NullDetector().needs_samples(RttMeanDeviation())


def test_defaults_wait_for_several_samples():
    det = RttWormholeDetector(per_hop_rtt=0.002)
    assert det.min_samples > 1
    assert det.evaluate((4, 0), 3, estimator(1e-6)).reason == "insufficient-samples"


def test_smoothing_absorbs_one_fast_sample():
    det = RttWormholeDetector(per_hop_rtt=0.002, tolerance=0.1, min_samples=8)
    # un seul aller-retour très rapide sur une route honnête ne suffit pas à la rejeter
    samples = [0.006] * 7 + [0.003]
    assert det.evaluate((4, 2), 3, estimator(*samples)).classification == ACCEPTED
    # une route systématiquement trop rapide est rejetée
    assert det.evaluate((4, 0), 3, estimator(*[0.0045] * 8)).classification == SUSPECTED


def test_verdict_carries_estimate_bound():
    det = RttWormholeDetector(per_hop_rtt=0.002, min_samples=2)
    est = estimator(0.006, 0.004)
    verdict = det.evaluate((4, 2), 3, est)
    assert verdict.estimate_bound == pytest.approx(est.get_estimate_bound())
    assert verdict.estimate_bound > verdict.observed_rtt

    assert det.evaluate((4, 2), 3, RttMeanDeviation()).estimate_bound is None
    assert NullDetector().evaluate((4, 2), 3, est).estimate_bound == pytest.approx(est.get_estimate_bound())
