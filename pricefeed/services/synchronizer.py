from __future__ import annotations

import threading
import time
from typing import Any

from pricefeed.integrations.binance_ws import BinanceWsClient, parse_ticker_message
from pricefeed.schemas.feed import FeedStatus
from pricefeed.schemas.quote import Quote
from pricefeed.services.formatting import format_decimal
from pricefeed.services.quote_table import QuoteTable


def normalize_symbols(symbols: list[str]) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()
    for symbol in symbols:
        value = str(symbol).strip().upper()
        if not value or value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out


def quote_from_ticker(ticker: dict[str, Any]) -> Quote:
    """Build a Quote from one row of the bulk 24h ticker response."""
    symbol = ticker.get("symbol")
    if not symbol:
        raise ValueError("missing symbol in ticker")
    return Quote(
        symbol=str(symbol),
        last_price=format_decimal(ticker.get("lastPrice")),
        absolute_change=format_decimal(ticker.get("priceChange")),
        percent_change=format_decimal(ticker.get("priceChangePercent")),
    )


class PriceFeedSynchronizer:
    """Snapshot-then-stream synchronizer for a fixed set of ticker symbols.

    ``activate()`` clears the table, loads the bulk snapshot and then keeps a
    combined ticker stream open on a worker thread. ``deactivate()`` closes the
    stream; every write is tagged with the activation's cancellation event, so
    nothing lands in the table after teardown.
    """

    def __init__(
        self,
        symbols: list[str],
        *,
        rest_client,
        ws_client: BinanceWsClient,
        table: QuoteTable | None = None,
        stale_after_sec: int = 15,
        backoff_base_sec: float = 1.0,
        backoff_cap_sec: float = 30.0,
        join_timeout_sec: float = 5.0,
    ) -> None:
        self.symbols = normalize_symbols(symbols)
        if not self.symbols:
            raise ValueError("at least one tracked symbol is required")
        self.rest_client = rest_client
        self.ws_client = ws_client
        self.table = table or QuoteTable()
        self.stale_after_sec = stale_after_sec
        self.backoff_base_sec = backoff_base_sec
        self.backoff_cap_sec = backoff_cap_sec
        self.join_timeout_sec = join_timeout_sec

        self._lifecycle_lock = threading.Lock()
        self._cancelled = threading.Event()
        self._worker: threading.Thread | None = None
        self._backfill_lock = threading.Lock()
        self._backfill_thread: threading.Thread | None = None

        self._loading = False
        self.connected = False
        self.reconnect_count = 0
        self.last_error: str | None = None
        self.snapshot_error: str | None = None
        self.last_message_ts: int | None = None
        self.last_heartbeat_ts: int | None = None

        self.ws_messages = 0
        self.skipped_messages = 0
        self.snapshot_loads = 0

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def active(self) -> bool:
        return self._worker is not None

    def quotes(self) -> dict[str, Quote]:
        return self.table.snapshot()

    def get(self, symbol: str) -> Quote | None:
        return self.table.get(symbol.strip().upper())

    def is_tracked(self, symbol: str) -> bool:
        return symbol.strip().upper() in self.symbols

    # lifecycle

    def activate(self) -> None:
        with self._lifecycle_lock:
            if self._worker is not None:
                self._deactivate_locked()

            cancelled = threading.Event()
            self._cancelled = cancelled
            self.table.clear()
            self._loading = True
            self.connected = False
            self.snapshot_error = None
            self.last_error = None
            self.last_message_ts = None
            self.last_heartbeat_ts = None

            self.ws_client.set_on_message(lambda quote: self._apply_quote(quote, cancelled))
            self.ws_client.set_on_state_change(
                lambda **state: self._on_ws_state(cancelled, **state)
            )
            self.ws_client.start()

            worker = threading.Thread(
                target=self._run,
                args=(cancelled,),
                daemon=True,
                name="pricefeed-sync",
            )
            self._worker = worker
            print(
                f"[FEED][feed_worker_start] thread=pricefeed-sync symbols={','.join(self.symbols)}",
                flush=True,
            )
            worker.start()

    def deactivate(self) -> None:
        with self._lifecycle_lock:
            self._deactivate_locked()

    def _deactivate_locked(self) -> None:
        self._cancelled.set()
        self.ws_client.stop()
        worker = self._worker
        self._worker = None
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout=self.join_timeout_sec)
            if worker.is_alive():
                print("[FEED][feed_worker_stop] status=join_timeout", flush=True)
            else:
                print("[FEED][feed_worker_stop] status=stopped", flush=True)
        with self._backfill_lock:
            backfill = self._backfill_thread
            self._backfill_thread = None
        if backfill is not None and backfill is not threading.current_thread():
            backfill.join(timeout=self.join_timeout_sec)
        self._loading = False
        self.connected = False

    def _run(self, cancelled: threading.Event) -> None:
        self.load_snapshot(cancelled)
        if cancelled.is_set():
            return

        def _connect_once() -> None:
            if cancelled.is_set():
                return
            self.ws_client.connect_and_subscribe(self.symbols)

        self.ws_client.run_with_reconnect(
            connect_once=_connect_once,
            backoff_base_sec=self.backoff_base_sec,
            backoff_cap_sec=self.backoff_cap_sec,
            cancelled=cancelled,
        )
        print("[FEED][feed_worker_exit] thread=pricefeed-sync", flush=True)

    # snapshot

    def load_snapshot(self, cancelled: threading.Event | None = None) -> int:
        """Populate the table from the bulk ticker snapshot.

        Failures are logged and recorded in ``snapshot_error``; the loading
        flag clears either way, unless the activation was torn down meanwhile.
        Returns the number of quotes written.
        """
        cancelled = cancelled or self._cancelled
        try:
            return self._fetch_snapshot(cancelled, only_missing=False)
        finally:
            if not cancelled.is_set():
                self._loading = False

    def backfill_missing(self, cancelled: threading.Event | None = None) -> int:
        """Fill tracked symbols that have no quote yet; present entries are kept."""
        if not self.table.missing(self.symbols):
            return 0
        return self._fetch_snapshot(cancelled or self._cancelled, only_missing=True)

    def _fetch_snapshot(self, cancelled: threading.Event, *, only_missing: bool) -> int:
        mode = "backfill" if only_missing else "initial"
        print(f"[SNAPSHOT][snapshot_fetch] mode={mode} symbols={','.join(self.symbols)}", flush=True)
        try:
            tickers = self.rest_client.get_24hr_tickers()
        except Exception as exc:
            print(f"[SNAPSHOT][snapshot_error] mode={mode} error={exc}", flush=True)
            if not cancelled.is_set():
                self.snapshot_error = str(exc)
            return 0

        if cancelled.is_set():
            print(f"[SNAPSHOT][snapshot_discard] mode={mode} reason=deactivated", flush=True)
            return 0

        by_symbol = {row.get("symbol"): row for row in tickers if isinstance(row, dict)}
        written = 0
        for symbol in self.symbols:
            ticker = by_symbol.get(symbol)
            if ticker is None:
                continue
            try:
                quote = quote_from_ticker(ticker)
            except ValueError as exc:
                print(f"[SNAPSHOT][snapshot_skip] symbol={symbol} reason={exc}", flush=True)
                continue
            store = self.table.fill_missing if only_missing else self.table.upsert
            if store(quote, cancelled):
                written += 1

        if cancelled.is_set():
            return written
        self.snapshot_error = None
        self.snapshot_loads += 1
        print(
            f"[SNAPSHOT][snapshot_result] mode={mode} tracked={len(self.symbols)} written={written}",
            flush=True,
        )
        return written

    # stream

    def handle_stream_message(self, payload: dict | str | bytes) -> bool:
        """Apply one raw stream message. Never raises on bad input."""
        try:
            quote = parse_ticker_message(payload)
        except ValueError as exc:
            self.skipped_messages += 1
            print(f"[FEED][stream_message_skip] reason={exc}", flush=True)
            return False
        return self._apply_quote(quote, self._cancelled)

    def _apply_quote(self, quote: Quote, cancelled: threading.Event) -> bool:
        if cancelled.is_set():
            return False
        if quote.symbol not in self.symbols:
            return False
        self.ws_messages += 1
        if not self.table.upsert(quote, cancelled):
            return False
        now = int(time.time())
        self.last_message_ts = now
        self.last_heartbeat_ts = now
        return True

    def _on_ws_state(
        self,
        cancelled: threading.Event,
        *,
        connected: bool,
        reconnect_count: int,
        last_error: str | None,
        heartbeat_ts: int | None = None,
    ) -> None:
        if cancelled.is_set():
            return
        self.connected = bool(connected)
        self.reconnect_count = int(reconnect_count)
        self.last_error = last_error
        if heartbeat_ts is not None:
            self.last_heartbeat_ts = int(heartbeat_ts)
        if connected:
            self._start_backfill(cancelled)

    def _start_backfill(self, cancelled: threading.Event) -> None:
        # runs off the socket thread so ticks are not held behind the REST call
        with self._backfill_lock:
            running = self._backfill_thread
            if running is not None and running.is_alive():
                return
            if not self.table.missing(self.symbols):
                return
            thread = threading.Thread(
                target=self.backfill_missing,
                args=(cancelled,),
                daemon=True,
                name="pricefeed-backfill",
            )
            self._backfill_thread = thread
            thread.start()

    # read surface

    def status(self, now: int | None = None) -> FeedStatus:
        ref = int(time.time()) if now is None else now
        heartbeat_fresh = (
            self.last_heartbeat_ts is not None
            and (ref - self.last_heartbeat_ts) <= self.stale_after_sec
        )
        return FeedStatus(
            loading=self._loading,
            connected=self.connected,
            stale=not (self.connected and heartbeat_fresh),
            reconnect_count=self.reconnect_count,
            last_error=self.last_error,
            snapshot_error=self.snapshot_error,
            last_message_ts=self.last_message_ts,
            tracked_symbols=list(self.symbols),
            missing_symbols=self.table.missing(self.symbols),
        )

    def metrics(self, now: int | None = None) -> dict:
        status = self.status(now=now)
        return {
            "cached_symbols": len(self.table),
            "ws_messages": self.ws_messages,
            "upserts": self.table.upserts,
            "skipped_messages": self.skipped_messages + self.ws_client.skipped_messages,
            "snapshot_loads": self.snapshot_loads,
            "ws_connected": status.connected,
            "ws_stale": status.stale,
            "ws_reconnect_count": status.reconnect_count,
            "ws_last_error": status.last_error,
            "last_ws_message_ts": status.last_message_ts,
            "last_ws_heartbeat_ts": self.last_heartbeat_ts,
        }
