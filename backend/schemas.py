"""Shared JSON Schemas for API contract validation."""

_NUM_OR_NULL = {"type": ["number", "null"]}
_STR_OR_NULL = {"type": ["string", "null"]}

QUOTE_SCHEMA = {
    "type": "object",
    "required": [
        "price", "volume_24h", "percent_change_24h", "percent_change_7d",
        "market_cap", "fully_diluted_market_cap",
    ],
    "properties": {
        "price": _NUM_OR_NULL,
        "volume_24h": _NUM_OR_NULL,
        "percent_change_24h": _NUM_OR_NULL,
        "percent_change_7d": _NUM_OR_NULL,
        "market_cap": _NUM_OR_NULL,
        "fully_diluted_market_cap": _NUM_OR_NULL,
        "last_updated": _STR_OR_NULL,
    }
}

LISTING_SCHEMA = {
    "type": "object",
    "required": [
        "id", "name", "symbol", "cmc_rank", "circulating_supply", "total_supply",
        "max_supply", "last_updated", "image", "quote",
    ],
    "properties": {
        "id": {"type": ["string", "integer"]},
        "name": {"type": "string"},
        "symbol": {"type": "string"},
        "cmc_rank": {"type": ["integer", "null"]},
        "circulating_supply": _NUM_OR_NULL,
        "total_supply": _NUM_OR_NULL,
        "max_supply": _NUM_OR_NULL,
        "last_updated": _STR_OR_NULL,
        "image": _STR_OR_NULL,
        "quote": {
            "type": "object",
            "minProperties": 1,
            "additionalProperties": QUOTE_SCHEMA,
        },
    }
}

STATUS_SCHEMA = {
    "type": "object",
    "required": ["timestamp", "notice", "provider", "fallback_used"],
    "properties": {
        "timestamp": {"type": "string"},
        "notice": _STR_OR_NULL,
        "provider": {"type": "string"},
        "fallback_used": {"type": "boolean"},
    }
}

LISTINGS_SCHEMA = {
    "type": "object",
    "required": ["status", "data"],
    "properties": {
        "status": STATUS_SCHEMA,
        "data": {"type": "array", "items": LISTING_SCHEMA},
    }
}

QUOTES_SCHEMA = {
    "type": "object",
    "required": ["status", "data"],
    "properties": {
        "status": STATUS_SCHEMA,
        "data": {"type": "object", "additionalProperties": LISTING_SCHEMA},
    }
}

ARTICLE_SCHEMA = {
    "type": "object",
    "required": ["id", "published_on", "title", "body", "url", "source_info", "categories"],
    "properties": {
        "id": {"type": "string"},
        "published_on": {"type": "integer"},
        "title": {"type": "string"},
        "body": {"type": "string"},
        "url": _STR_OR_NULL,
        "imageurl": _STR_OR_NULL,
        "source_info": {
            "type": "object",
            "required": ["name"],
            "properties": {"name": {"type": "string"}},
        },
        "categories": {"type": "string"},
    }
}

NEWS_SCHEMA = {
    "type": "object",
    "required": ["Data"],
    "properties": {
        "Data": {"type": "array", "items": ARTICLE_SCHEMA},
    }
}

ERROR_SCHEMA = {
    "type": "object",
    "required": ["error", "message"],
    "properties": {
        "error": {"type": "string"},
        "message": {"type": "string", "minLength": 1},
        "provider": {"type": "string"},
    }
}

HEALTH_SCHEMA = {
    "type": "object",
    "required": ["status", "timestamp", "api", "version"],
    "properties": {
        "status": {"const": "OK"},
        "timestamp": {"type": "string"},
        "api": {"type": "string"},
        "version": {"type": "string"},
        "uptime_seconds": {"type": "number"},
        "errors_5xx": {"type": "integer"},
    }
}
