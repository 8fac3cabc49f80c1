from watermeter.services.storage import PersistedState, StateStore


def test_missing_file_loads_none(tmp_path):
    store = StateStore(tmp_path / "watermeter.txt", save_delay=0)
    assert store.load() is None


def test_save_and_load_round_trip(tmp_path):
    path = tmp_path / "watermeter.txt"
    store = StateStore(path, save_delay=0)

    store.save(1500.7, 5226, 4774)

    assert path.read_text(encoding="utf-8") == "1500,5226,4774"
    assert store.load() == PersistedState(total=1500.0, p0=5226, p1=4774)


def test_burst_of_saves_is_coalesced(tmp_path):
    path = tmp_path / "watermeter.txt"
    store = StateStore(path, save_delay=60)

    store.save(1000, 5226, 4774)
    store.save(1100, 5200, 4800)
    assert not path.exists()

    store.flush()
    assert path.read_text(encoding="utf-8") == "1100,5200,4800"


def test_cancel_drops_pending_write(tmp_path):
    path = tmp_path / "watermeter.txt"
    store = StateStore(path, save_delay=60)

    store.save(1000, 5226, 4774)
    store.cancel()
    store.flush()

    assert not path.exists()


def test_non_positive_values_are_not_saved(tmp_path):
    path = tmp_path / "watermeter.txt"
    store = StateStore(path, save_delay=0)

    store.save(0, 5226, 4774)
    store.save(100, 0, 4774)

    assert not path.exists()


def test_total_only_record(tmp_path):
    path = tmp_path / "watermeter.txt"
    path.write_text("1.234.567", encoding="utf-8")

    assert StateStore(path).load() == PersistedState(total=1234567.0)


def test_corrupt_record_loads_none(tmp_path):
    path = tmp_path / "watermeter.txt"
    path.write_text("hello,world", encoding="utf-8")

    assert StateStore(path).load() is None
