"""openHAB REST client for the remote water total."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

import httpx

from watermeter.config import defaults

LOGGER = logging.getLogger("watermeter.remote")

LITRES_PER_M3 = 1000
EMPTY_STATES = {"", "NULL", "UNDEF"}


def parse_item_state(text: str) -> float:
    """Convert an openHAB item state such as ``"1234.567 m³"`` to litres.

    Raises ``ValueError`` for non numeric states.
    """

    state = (text or "").strip()
    if " " in state:
        state = state[: state.index(" ")]
    if state.upper() in EMPTY_STATES:
        return 0.0
    return float(state) * LITRES_PER_M3


class OpenHABClient:
    """Fetch and update a single number item.

    Requests are best-effort: failures are logged and reported as ``None`` /
    ``False``, never retried.
    """

    def __init__(
        self,
        base_url: str,
        item: str = defaults.OPENHAB_ITEM,
        *,
        timeout: float = defaults.OPENHAB_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._item = item
        self._timeout = timeout
        self._transport = transport

    @property
    def item_url(self) -> str:
        return f"{self._base_url}/rest/items/{self._item}"

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self._timeout, transport=self._transport)

    def fetch_total(self) -> Optional[float]:
        url = f"{self.item_url}/state"
        try:
            with self._client() as client:
                response = client.get(url)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            LOGGER.warning("Error reading openHAB item %s: %s", self._item, exc)
            return None

        try:
            total = parse_item_state(response.text)
        except ValueError:
            LOGGER.warning("Unexpected openHAB state for %s: %r", self._item, response.text)
            return None
        LOGGER.debug("Reading openHAB %s as %s", self._item, total)
        return total

    def push_total(self, total: float) -> bool:
        value = total / LITRES_PER_M3
        try:
            with self._client() as client:
                response = client.post(
                    self.item_url,
                    content=f"{value:.3f}",
                    headers={"Content-Type": "text/plain"},
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            LOGGER.warning("Error updating openHAB item %s: %s", self._item, exc)
            return False
        LOGGER.info("Updated openHAB %s to %.3f", self._item, value)
        return True

    def fetch_total_async(self, callback: Callable[[float], None]) -> threading.Thread:
        def _run() -> None:
            total = self.fetch_total()
            if total is not None:
                callback(total)

        thread = threading.Thread(target=_run, name="OpenHABFetch", daemon=True)
        thread.start()
        return thread

    def push_total_async(self, total: float) -> threading.Thread:
        thread = threading.Thread(target=self.push_total, args=(total,), name="OpenHABPush", daemon=True)
        thread.start()
        return thread


__all__ = ["OpenHABClient", "parse_item_state"]
