from __future__ import annotations

from typing import List, Tuple


def build_payload(
    total: float = 1500.0,
    *,
    state: str = "calibrated",
    first: int = 5226,
    second: int = 4774,
    loop: str = "1.234",
    flow: str = "0",
    cal_count: int = 0,
) -> str:
    fields = [loop, str(total), "0.5", flow, "0.0", "1.0", "3", "12.5", state, str(first), str(second), str(cal_count)]
    return ",".join(fields)


class RecordingSink:
    def __init__(self) -> None:
        self.commands: List[str] = []

    def send(self, command: str) -> None:
        self.commands.append(command)


class RecordingStore:
    def __init__(self) -> None:
        self.saves: List[Tuple[float, int, int]] = []

    def save(self, total: float, p0: int, p1: int) -> None:
        self.saves.append((total, p0, p1))


class RecordingRemote:
    def __init__(self) -> None:
        self.pushes: List[float] = []

    def push_total_async(self, total: float) -> None:
        self.pushes.append(total)
