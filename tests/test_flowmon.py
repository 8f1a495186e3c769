import xml.etree.ElementTree as ET

import pandas as pd
import pytest

from wormhole_rtt.flowmon import RX, TX, FlowKey, FlowMonitor

KEY = FlowKey(1, 4, "UDP", 9)


def test_throughput_over_transfer_window():
    mon = FlowMonitor()
    mon.observe(KEY, 125000, TX, 1.0)
    mon.observe(KEY, 125000, RX, 3.0)

    row = mon.report()[0]
    assert row["tx_bytes"] == 125000
    assert row["rx_bytes"] == 125000
    assert row["throughput_bps"] == pytest.approx(250000.0)
    assert row["throughput_mbps"] == pytest.approx(0.25)


def test_zero_elapsed_time_reports_zero():
    mon = FlowMonitor()
    mon.observe(KEY, 1000, TX, 2.0)
    mon.observe(KEY, 1000, RX, 2.0)
    assert mon.report()[0]["throughput_bps"] == 0.0


def test_nothing_received_reports_zero():
    mon = FlowMonitor()
    mon.observe(KEY, 1000, TX, 2.0)
    row = mon.report()[0]
    assert row["rx_bytes"] == 0
    assert row["throughput_bps"] == 0.0
    assert row["mean_delay"] is None


def test_record_created_on_first_observation_and_updated():
    mon = FlowMonitor()
    other = FlowKey(4, 1, "UDP", 49153)
    mon.observe(KEY, 100, TX, 1.0, packet_id=(1, 1))
    mon.observe(KEY, 100, TX, 1.5, packet_id=(1, 2))
    mon.observe(KEY, 100, RX, 1.2, packet_id=(1, 1))
    mon.observe(other, 100, TX, 1.3)

    rec = mon.flows[KEY]
    assert len(mon.flows) == 2
    assert rec.flow_id == 1 and mon.flows[other].flow_id == 2
    assert rec.tx_packets == 2
    assert rec.time_first_tx == 1.0
    assert rec.time_last_tx == 1.5
    assert rec.time_last_rx == 1.2
    assert rec.mean_delay() == pytest.approx(0.2)


def test_unknown_direction():
    with pytest.raises(ValueError):
        FlowMonitor().observe(KEY, 100, "sideways", 1.0)


def test_lost_packets():
    mon = FlowMonitor()
    mon.observe(KEY, 100, TX, 1.0, packet_id=(1, 1))
    mon.observe(KEY, 100, TX, 50.0, packet_id=(1, 2))

    assert mon.check_for_lost_packets(now=55.0, max_delay=10.0) == 1
    assert mon.flows[KEY].lost_packets == 1
    assert (1, 2) in mon.in_flight


def test_xml_trace(tmp_path):
    mon = FlowMonitor()
    mon.observe(KEY, 1024, TX, 2.0)
    mon.observe(KEY, 1024, RX, 2.05)
    path = tmp_path / "flows.xml"
    mon.serialize_to_xml(str(path))

    root = ET.parse(path).getroot()
    assert root.tag == "FlowMonitor"
    flow = root.find("FlowStats/Flow")
    assert flow.get("txBytes") == "1024"
    assert flow.get("rxBytes") == "1024"
    cls = root.find("Ipv4FlowClassifier/Flow")
    assert cls.get("sourceAddress") == "1"
    assert cls.get("destinationPort") == "9"


def test_csv_export(tmp_path):
    mon = FlowMonitor()
    mon.observe(KEY, 125000, TX, 1.0)
    mon.observe(KEY, 125000, RX, 3.0)
    path = tmp_path / "flows.csv"
    mon.to_csv(path)

    df = pd.read_csv(path)
    assert list(df["throughput_bps"]) == [250000.0]
    assert df.loc[0, "dest_id"] == 4
