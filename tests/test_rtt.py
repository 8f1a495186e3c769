import pytest

from wormhole_rtt.rtt import RttMeanDeviation, RttTable


def smoothed(samples, alpha, beta):
    mean, dev = samples[0], samples[0] / 2
    for s in samples[1:]:
        dev = (1 - beta) * dev + beta * abs(s - mean)
        mean = (1 - alpha) * mean + alpha * s
    return mean, dev


def test_first_sample_seeds_estimate():
    est = RttMeanDeviation()
    assert est.get_estimate() is None
    assert est.get_estimate_bound() is None

    est.record_measurement(0.1)
    assert est.get_estimate() == pytest.approx(0.1)
    assert est.deviation == pytest.approx(0.05)
    assert est.get_estimate_bound() == pytest.approx(0.1 + 4 * 0.05)


def test_initial_deviation_override():
    est = RttMeanDeviation(initial_deviation=0.01)
    est.record_measurement(0.1)
    assert est.deviation == pytest.approx(0.01)


@pytest.mark.parametrize("samples", [
    [0.1],
    [0.1, 0.2],
    [0.006, 0.0061, 0.0058, 0.007, 0.0059],
    [1.0, 0.0, 3.0, 2.5, 0.5, 0.25],
])
def test_estimate_follows_recurrence(samples):
    est = RttMeanDeviation(alpha=0.125, beta=0.25, k=4)
    for s in samples:
        est.record_measurement(s)

    mean, dev = smoothed(samples, 0.125, 0.25)
    assert est.get_estimate() == pytest.approx(mean)
    assert est.deviation == pytest.approx(dev)
    assert est.get_estimate_bound() == pytest.approx(mean + 4 * dev)
    assert est.nb_samples == len(samples)


def test_custom_gains():
    est = RttMeanDeviation(alpha=0.5, beta=0.5, k=2)
    est.record_measurement(1.0)
    est.record_measurement(3.0)
    # dev = 0.5*0.5 + 0.5*|3-1| = 1.25 ; mean = 0.5*1 + 0.5*3 = 2
    assert est.get_estimate() == pytest.approx(2.0)
    assert est.deviation == pytest.approx(1.25)
    assert est.get_estimate_bound() == pytest.approx(4.5)


def test_negative_sample_rejected():
    est = RttMeanDeviation()
    with pytest.raises(ValueError):
        est.record_measurement(-0.1)
    assert est.nb_samples == 0


def test_table_keeps_one_estimator_per_route():
    table = RttTable()
    table.record((4, 0), 0.004, 1.0)
    table.record((4, 2), 0.007, 2.0)
    table.record((4, 0), 0.005, 3.0)

    assert (4, 0) in table
    assert table.get((4, 0)).nb_samples == 2
    assert table.get((4, 2)).get_estimate() == pytest.approx(0.007)
    assert len(table.all_samples()) == 3
    assert table.get((4, 0)).samples[1].timestamp == 3.0
