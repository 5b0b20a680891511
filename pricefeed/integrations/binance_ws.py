from __future__ import annotations

import json
import threading
import time
from typing import Any, Callable, Dict, Optional

from pricefeed.schemas.quote import Quote
from pricefeed.services.formatting import format_decimal

TICKER_STREAM_SUFFIX = "@ticker"


def stream_name(symbol: str) -> str:
    return f"{symbol.strip().lower()}{TICKER_STREAM_SUFFIX}"


def build_stream_url(base_url: str, symbols: list[str]) -> str:
    if not symbols:
        raise ValueError("at least one symbol is required")
    streams = "/".join(stream_name(s) for s in symbols)
    return f"{base_url.rstrip('/')}/stream?streams={streams}"


def _required(ticker: Dict[str, Any], key: str) -> Any:
    value = ticker.get(key)
    if value is None or value == "":
        raise ValueError(f"missing ticker field {key!r}")
    return value


def parse_ticker_message(payload: dict | str | bytes) -> Quote:
    """Parse a combined-stream ticker message into a formatted Quote.

    Expects ``{"stream": "btcusdt@ticker", "data": {"s": ..., "c": ..., "p": ..., "P": ...}}``.
    Raises ValueError for anything else.
    """
    raw: Dict[str, Any]

    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ValueError("payload must be utf-8 text") from exc

    if isinstance(payload, str):
        try:
            decoded = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ValueError("payload must be valid JSON string or dict") from exc
        if not isinstance(decoded, dict):
            raise ValueError("decoded payload must be an object")
        raw = decoded
    elif isinstance(payload, dict):
        raw = payload
    else:
        raise ValueError("payload must be dict or JSON string")

    ticker = raw.get("data")
    if not isinstance(ticker, dict):
        raise ValueError("missing data envelope in payload")

    return Quote(
        symbol=str(_required(ticker, "s")).upper(),
        last_price=format_decimal(_required(ticker, "c")),
        absolute_change=format_decimal(_required(ticker, "p")),
        percent_change=format_decimal(_required(ticker, "P")),
    )


class BinanceWsClient:
    """Combined ticker stream client with a supervised reconnect loop."""

    DEFAULT_BASE_URL = "wss://stream.binance.com:9443"

    def __init__(
        self,
        on_message: Optional[Callable[[Quote], None]] = None,
        *,
        base_url: Optional[str] = None,
        connect_timeout_sec: float = 10.0,
        ping_interval_sec: float = 20.0,
        ping_timeout_sec: float = 10.0,
        websocket_app_factory: Optional[Callable[..., Any]] = None,
        on_state_change: Optional[Callable[..., None]] = None,
    ) -> None:
        self._on_message = on_message
        self.base_url = base_url or self.DEFAULT_BASE_URL
        self.connect_timeout_sec = connect_timeout_sec
        self.ping_interval_sec = ping_interval_sec
        self.ping_timeout_sec = ping_timeout_sec
        self.running = False
        self.last_error: str | None = None
        self.reconnect_count = 0
        self.open_count = 0
        self.skipped_messages = 0
        self._websocket_app_factory = websocket_app_factory or self._default_websocket_app_factory
        self._on_state_change = on_state_change
        self._first_message_logged = False
        self._lock = threading.Lock()
        self._ws_app: Any = None
        self._stop_event = threading.Event()

    def _emit_state(self, *, connected: bool, heartbeat_ts: int | None = None) -> None:
        if self._on_state_change is None:
            return
        self._on_state_change(
            connected=connected,
            reconnect_count=self.reconnect_count,
            last_error=self.last_error,
            heartbeat_ts=heartbeat_ts,
        )

    def _default_websocket_app_factory(self, *args: Any, **kwargs: Any) -> Any:
        import websocket

        # WebSocketApp has no per-connection timeout; the socket default covers the handshake.
        websocket.setdefaulttimeout(self.connect_timeout_sec)
        return websocket.WebSocketApp(*args, **kwargs)

    def start(self) -> None:
        with self._lock:
            self.running = True
            self._stop_event.clear()
        self._emit_state(connected=False)

    def stop(self) -> None:
        with self._lock:
            self.running = False
            self._stop_event.set()
            ws_app = self._ws_app
            self._ws_app = None
        self._first_message_logged = False
        if ws_app is not None:
            ws_app.close()
            print("[WS][ws_stop] socket=closed", flush=True)
        self._emit_state(connected=False)

    def set_on_message(self, callback: Callable[[Quote], None]) -> None:
        self._on_message = callback

    def set_on_state_change(self, callback: Callable[..., None]) -> None:
        self._on_state_change = callback

    def handle_raw_message(self, payload: dict | str | bytes) -> Quote:
        quote = parse_ticker_message(payload)
        if self._on_message is not None:
            self._on_message(quote)
        return quote

    def connect_and_subscribe(self, symbols: list[str]) -> Any:
        url = build_stream_url(self.base_url, symbols)
        print(f"[WS][ws_connect] url={url} symbols={','.join(symbols)}", flush=True)
        state = {"opened": False}

        def _on_open(ws: Any) -> None:
            state["opened"] = True
            self.open_count += 1
            print("[WS][ws_connect_result] status=open", flush=True)
            self._emit_state(connected=True, heartbeat_ts=int(time.time()))

        def _on_message(_: Any, raw_message: Any) -> None:
            if not self._first_message_logged:
                print("[WS][ws_first_message] received=1", flush=True)
                self._first_message_logged = True
            try:
                self.handle_raw_message(raw_message)
            except ValueError as exc:
                # subscription acks and control frames carry no ticker envelope
                self.skipped_messages += 1
                print(f"[WS][ws_message_skip] reason={exc}", flush=True)

        def _on_error(_: Any, error: Any) -> None:
            self.last_error = str(error)
            print(f"[WS][ws_error] {self.last_error}", flush=True)
            self._emit_state(connected=False)

        def _on_close(_: Any, code: Any, reason: Any) -> None:
            print(f"[WS][ws_close] code={code} reason={reason}", flush=True)
            self._emit_state(connected=False)

        ws_app = self._websocket_app_factory(
            url,
            on_open=_on_open,
            on_message=_on_message,
            on_error=_on_error,
            on_close=_on_close,
        )

        with self._lock:
            if self._stop_event.is_set():
                return ws_app
            self._ws_app = ws_app
        try:
            ws_app.run_forever(
                ping_interval=self.ping_interval_sec,
                ping_timeout=self.ping_timeout_sec,
            )
        finally:
            with self._lock:
                if self._ws_app is ws_app:
                    self._ws_app = None
        if not state["opened"]:
            raise RuntimeError(self.last_error or "ws_open_not_confirmed")
        return ws_app

    def run_with_reconnect(
        self,
        *,
        connect_once: Callable[[], None],
        sleep_fn: Optional[Callable[[float], None]] = None,
        max_retries: int | None = None,
        backoff_base_sec: float = 1.0,
        backoff_cap_sec: float = 30.0,
        cancelled: threading.Event | None = None,
    ) -> bool:
        """Keep ``connect_once`` running until ``stop()`` with capped exponential backoff.

        Both failures and normal closes are followed by a reconnect. The
        backoff resets once a connection has opened. ``max_retries`` bounds
        consecutive failed attempts (None retries forever). ``cancelled`` ends
        the loop for a caller whose activation was torn down. Returns True when
        stopped, False when retries are exhausted. Call ``start()`` first.
        """
        if max_retries is not None and max_retries < 1:
            return False

        sleep = sleep_fn or self._stop_event.wait
        failures = 0

        def _keep_running() -> bool:
            return self.running and not (cancelled is not None and cancelled.is_set())

        while _keep_running():
            opened_before = self.open_count
            try:
                connect_once()
            except Exception as exc:
                self.last_error = str(exc)
                print(f"[WS][ws_connect_error] error={self.last_error}", flush=True)

            if not _keep_running():
                break

            self.reconnect_count += 1
            self._emit_state(connected=False)

            if self.open_count > opened_before:
                failures = 0
            failures += 1
            if max_retries is not None and failures >= max_retries:
                print(f"[WS][ws_reconnect_exhausted] attempts={failures}", flush=True)
                return False

            backoff = min(backoff_base_sec * (2 ** (failures - 1)), backoff_cap_sec)
            print(f"[WS][ws_reconnect_wait] attempt={failures} backoff_sec={backoff}", flush=True)
            sleep(backoff)

        return True
