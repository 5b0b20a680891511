import os
from functools import lru_cache

from pydantic import BaseModel, PositiveFloat, PositiveInt, model_validator

DEFAULT_SYMBOLS = ["BTCUSDT", "ETHUSDT", "SOLUSDT", "BNBUSDT"]


class Settings(BaseModel):
    PRICEFEED_SYMBOLS: list[str]
    PRICEFEED_REST_URL: str = "https://api.binance.com"
    PRICEFEED_WS_URL: str = "wss://stream.binance.com:9443"
    PRICEFEED_HTTP_TIMEOUT_SEC: PositiveFloat = 5.0
    PRICEFEED_CONNECT_TIMEOUT_SEC: PositiveFloat = 10.0
    PRICEFEED_BACKOFF_BASE_SEC: PositiveFloat = 1.0
    PRICEFEED_BACKOFF_CAP_SEC: PositiveFloat = 30.0
    PRICEFEED_STALE_AFTER_SEC: PositiveInt = 15

    @model_validator(mode="after")
    def _check_backoff_bounds(self) -> "Settings":
        if self.PRICEFEED_BACKOFF_CAP_SEC < self.PRICEFEED_BACKOFF_BASE_SEC:
            raise ValueError("PRICEFEED_BACKOFF_CAP_SEC must be >= PRICEFEED_BACKOFF_BASE_SEC")
        return self

    @classmethod
    def from_env(cls) -> "Settings":
        raw_symbols = os.getenv("PRICEFEED_SYMBOLS", ",".join(DEFAULT_SYMBOLS))
        symbols = [s.strip().upper() for s in raw_symbols.split(",") if s.strip()]
        if not symbols:
            symbols = list(DEFAULT_SYMBOLS)

        values = {"PRICEFEED_SYMBOLS": symbols}
        for name in cls.model_fields:
            if name == "PRICEFEED_SYMBOLS":
                continue
            raw = os.getenv(name)
            if raw is not None and raw.strip():
                values[name] = raw.strip()
        return cls.model_validate(values)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
