from pydantic import BaseModel, ConfigDict


class Quote(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    last_price: str
    absolute_change: str
    percent_change: str


class QuoteList(BaseModel):
    loading: bool
    quotes: dict[str, Quote]
