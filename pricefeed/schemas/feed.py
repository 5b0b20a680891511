from pydantic import BaseModel


class FeedStatus(BaseModel):
    loading: bool
    connected: bool
    stale: bool
    reconnect_count: int = 0
    last_error: str | None = None
    snapshot_error: str | None = None
    last_message_ts: int | None = None
    tracked_symbols: list[str]
    missing_symbols: list[str]
