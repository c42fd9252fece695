"""Pydantic models for the canonical schema and request bodies.

Listings use the CoinMarketCap field names and articles the CryptoCompare
ones, because that is what the dashboard already renders. Fields a provider
does not supply stay as explicit ``null`` (``model_dump`` keeps ``None``).
"""
from __future__ import annotations
from typing import Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator


class Quote(BaseModel):
    price: Optional[float] = None
    volume_24h: Optional[float] = None
    percent_change_24h: Optional[float] = None
    percent_change_7d: Optional[float] = None
    market_cap: Optional[float] = None
    fully_diluted_market_cap: Optional[float] = None
    last_updated: Optional[str] = None


class Listing(BaseModel):
    id: Union[str, int]
    name: str
    symbol: str
    slug: Optional[str] = None
    cmc_rank: Optional[int] = None
    circulating_supply: Optional[float] = None
    total_supply: Optional[float] = None
    max_supply: Optional[float] = None
    last_updated: Optional[str] = None
    image: Optional[str] = None
    quote: Dict[str, Quote] = Field(default_factory=dict)


class SourceInfo(BaseModel):
    name: str = 'Unknown'


class Article(BaseModel):
    id: str
    published_on: int
    title: str = 'Untitled'
    body: str = ''
    url: Optional[str] = None
    imageurl: Optional[str] = None
    source_info: SourceInfo = Field(default_factory=SourceInfo)
    categories: str = ''


class ListingsStatus(BaseModel):
    timestamp: str
    error_code: int = 0
    error_message: Optional[str] = None
    elapsed: int = 0
    credit_count: int = 0
    notice: Optional[str] = None
    provider: Optional[str] = None
    fallback_used: bool = False


class HealthResponse(BaseModel):
    status: str = Field(pattern='^OK$')
    timestamp: str
    api: str
    version: str
    uptime_seconds: float
    errors_5xx: int


class PriceKeyRequest(BaseModel):
    model_config = ConfigDict(extra='ignore', populate_by_name=True)

    api_key: Optional[str] = Field(default=None, alias='apiKey')
    provider: Optional[str] = None

    @field_validator('api_key', 'provider', mode='before')
    @classmethod
    def _blank_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class NewsKeyRequest(PriceKeyRequest):
    custom_url: Optional[str] = Field(default=None, alias='customUrl')

    @field_validator('custom_url', mode='before')
    @classmethod
    def _url_blank_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


def dump_listings(listings: List[Listing]) -> List[dict]:
    return [l.model_dump() for l in listings]


def dump_articles(articles: List[Article]) -> List[dict]:
    return [a.model_dump() for a in articles]
