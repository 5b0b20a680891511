from fastapi import APIRouter, HTTPException, Request

from pricefeed.schemas.feed import FeedStatus
from pricefeed.schemas.quote import Quote, QuoteList

router = APIRouter()


@router.get('/quotes', response_model=QuoteList)
def list_quotes(request: Request):
    synchronizer = request.app.state.synchronizer
    return QuoteList(loading=synchronizer.loading, quotes=synchronizer.quotes())


@router.get('/quotes/{symbol}', response_model=Quote)
def get_quote(symbol: str, request: Request):
    synchronizer = request.app.state.synchronizer
    if not synchronizer.is_tracked(symbol):
        raise HTTPException(status_code=404, detail='SYMBOL_NOT_TRACKED')
    quote = synchronizer.get(symbol)
    if quote is None:
        raise HTTPException(status_code=503, detail='QUOTE_NOT_AVAILABLE')
    return quote


@router.get('/feed/status', response_model=FeedStatus)
def feed_status(request: Request):
    return request.app.state.synchronizer.status()


@router.get('/metrics/quote')
def quote_metrics(request: Request):
    return request.app.state.synchronizer.metrics()
