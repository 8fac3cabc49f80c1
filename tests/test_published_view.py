from watermeter.core.published import PublishedView, PublishedViewBuffer


def test_empty_view_is_invalid():
    assert PublishedView().to_dict() == {"valid": False}


def test_valid_view_exposes_total_and_split(make_reading):
    payload = PublishedView(reading=make_reading(1500), valid=True).to_dict()

    assert payload["valid"] is True
    assert payload["total"] == 1500.0
    assert (payload["p0"], payload["p1"]) == (5226, 4774)
    assert payload["calibration"] == "calibrated"
    assert payload["loop"] == 1234
    assert payload["calCount"] == 0


def test_invalid_view_hides_unconfirmed_numbers(make_reading):
    payload = PublishedView(reading=make_reading(1500), valid=False).to_dict()

    assert payload["valid"] is False
    assert "total" not in payload
    assert "p0" not in payload
    assert "p1" not in payload
    assert payload["pulse"] == 3


def test_calibrating_view_shows_timings(make_reading):
    reading = make_reading(1500, state="calibrating", first=810, second=790)
    payload = PublishedView(reading=reading, valid=True).to_dict()

    assert (payload["t0"], payload["t1"]) == (810, 790)
    assert "p0" not in payload


def test_buffer_flips_between_slots(make_reading):
    buffer = PublishedViewBuffer()
    held = buffer.current()
    assert held.reading is None

    first = PublishedView(reading=make_reading(100), valid=True)
    second = PublishedView(reading=make_reading(200), valid=False)
    buffer.publish(first)
    assert buffer.current() is first
    buffer.publish(second)
    assert buffer.current() is second

    # A reader holding an older snapshot keeps a complete view.
    assert held.to_dict() == {"valid": False}
    assert first.to_dict()["total"] == 100.0
