from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests

from pricefeed.errors import SnapshotFetchError


class BinanceRestClient:
    """Public market-data REST client for the bulk 24h ticker snapshot."""

    DEFAULT_BASE_URL = "https://api.binance.com"

    def __init__(
        self,
        base_url: Optional[str] = None,
        session: Optional[Any] = None,
        timeout: float = 5.0,
    ) -> None:
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self.session = session or requests
        self.timeout = timeout

    def get_24hr_tickers(self) -> List[Dict[str, Any]]:
        try:
            response = self.session.get(
                f"{self.base_url}/api/v3/ticker/24hr",
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as exc:
            raise SnapshotFetchError(f"ticker snapshot request failed: {exc}") from exc
        except ValueError as exc:
            # requests' JSONDecodeError subclasses ValueError
            raise SnapshotFetchError("ticker snapshot body is not valid JSON") from exc

        if not isinstance(payload, list):
            raise SnapshotFetchError("ticker snapshot body must be a list")
        return [row for row in payload if isinstance(row, dict)]
