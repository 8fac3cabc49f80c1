import pytest

from watermeter.models.reading import CalibrationState, FrameError, parse_reading
from tests.helpers import build_payload


def test_fields_are_mapped_by_position():
    reading = parse_reading("2.500,1234.5,0.75,1.200,10.5,11.25,42,3.5,calibrated,5226,4774,7")

    assert reading.loop_cycles == 2500
    assert reading.cpu_load_percent == pytest.approx(25.0)
    assert reading.total == pytest.approx(1234.5)
    assert reading.last_period_flow == pytest.approx(0.75)
    assert reading.flow_rate == 1200
    assert reading.min_total == pytest.approx(10.5)
    assert reading.last_total == pytest.approx(11.25)
    assert reading.pulse_count == 42
    assert reading.last_total_time == pytest.approx(3.5)
    assert reading.calibration_state is CalibrationState.CALIBRATED
    assert (reading.p0, reading.p1) == (5226, 4774)
    assert reading.t0 is None and reading.t1 is None
    assert reading.calibration_sample_count == 7


def test_cpu_load_is_clamped():
    reading = parse_reading(build_payload(loop="25.000"))
    assert reading.cpu_load_percent == 100.0


def test_calibrating_frame_carries_timings():
    reading = parse_reading(build_payload(state="calibrating", first=812, second=790))

    assert reading.calibrating
    assert (reading.t0, reading.t1) == (812, 790)
    assert reading.p0 is None and reading.p1 is None
    assert (reading.split_p0, reading.split_p1) == (0, 0)


def test_short_frame_is_rejected():
    with pytest.raises(FrameError):
        parse_reading("1,2,3,4,5,6,7,8,calibrated,5226,4774")


def test_extra_fields_are_ignored():
    reading = parse_reading(build_payload() + ",extra,fields")
    assert reading.calibration_sample_count == 0


@pytest.mark.parametrize(
    "payload",
    [
        build_payload(loop="abc"),
        "1,not-a-number,0.5,0,0,1,3,12.5,calibrated,5226,4774,0",
        build_payload(state="confused"),
    ],
)
def test_malformed_fields_are_rejected(payload):
    with pytest.raises(FrameError):
        parse_reading(payload)


def test_every_thousands_separator_is_stripped():
    reading = parse_reading(build_payload(loop="1.234.567", flow="2.000.000"))

    assert reading.loop_cycles == 1234567
    assert reading.flow_rate == 2000000
