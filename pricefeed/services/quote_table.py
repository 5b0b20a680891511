from __future__ import annotations

import threading

from pricefeed.schemas.quote import Quote


class QuoteTable:
    """Latest quote per symbol. Single writer, copy-on-read."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[str, Quote] = {}
        self.upserts = 0

    def upsert(self, quote: Quote, cancelled: threading.Event | None = None) -> bool:
        """Store ``quote`` unless ``cancelled`` is already set.

        The cancellation check happens under the table lock, so a teardown
        that sets the event first always wins over a late write.
        """
        with self._lock:
            if cancelled is not None and cancelled.is_set():
                return False
            self._rows[quote.symbol] = quote
            self.upserts += 1
            return True

    def fill_missing(self, quote: Quote, cancelled: threading.Event | None = None) -> bool:
        with self._lock:
            if cancelled is not None and cancelled.is_set():
                return False
            if quote.symbol in self._rows:
                return False
            self._rows[quote.symbol] = quote
            self.upserts += 1
            return True

    def get(self, symbol: str) -> Quote | None:
        with self._lock:
            return self._rows.get(symbol)

    def snapshot(self) -> dict[str, Quote]:
        with self._lock:
            return dict(self._rows)

    def missing(self, symbols: list[str]) -> list[str]:
        with self._lock:
            return [s for s in symbols if s not in self._rows]

    def clear(self) -> None:
        with self._lock:
            self._rows.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)
