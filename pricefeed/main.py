from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from pricefeed.api.routes import router
from pricefeed.config.settings import Settings, get_settings
from pricefeed.integrations.binance_rest import BinanceRestClient
from pricefeed.integrations.binance_ws import BinanceWsClient
from pricefeed.services.synchronizer import PriceFeedSynchronizer


def build_synchronizer(settings: Settings) -> PriceFeedSynchronizer:
    rest_client = BinanceRestClient(
        base_url=settings.PRICEFEED_REST_URL,
        timeout=settings.PRICEFEED_HTTP_TIMEOUT_SEC,
    )
    ws_client = BinanceWsClient(
        base_url=settings.PRICEFEED_WS_URL,
        connect_timeout_sec=settings.PRICEFEED_CONNECT_TIMEOUT_SEC,
    )
    return PriceFeedSynchronizer(
        settings.PRICEFEED_SYMBOLS,
        rest_client=rest_client,
        ws_client=ws_client,
        stale_after_sec=settings.PRICEFEED_STALE_AFTER_SEC,
        backoff_base_sec=settings.PRICEFEED_BACKOFF_BASE_SEC,
        backoff_cap_sec=settings.PRICEFEED_BACKOFF_CAP_SEC,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    synchronizer = app.state.synchronizer
    synchronizer.activate()
    try:
        yield
    finally:
        synchronizer.deactivate()


def create_app(
    settings: Settings | None = None,
    synchronizer: PriceFeedSynchronizer | None = None,
) -> FastAPI:
    app = FastAPI(title="Crypto Price Feed Gateway", version="0.1.0", lifespan=lifespan)
    app.include_router(router, prefix="/v1")

    if synchronizer is None:
        synchronizer = build_synchronizer(settings or get_settings())
    app.state.synchronizer = synchronizer
    return app


app = create_app()
