from __future__ import annotations

import pytest

from watermeter.models.reading import Reading, parse_reading
from tests.helpers import build_payload


@pytest.fixture()
def make_reading():
    def _make(total: float = 1500.0, **kwargs) -> Reading:
        return parse_reading(build_payload(total, **kwargs))

    return _make
