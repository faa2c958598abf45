"""MOEX ISS candles feed.

Pages through the ISS candles endpoint lazily and exposes the rows as one
forward-only cursor; the CLI streams them as CSV.
"""

from .api import MarketKind, get_candles, get_currency_candles, get_stock_candles
from .cursor import Cursor
from .errors import DecodeError, FetchError, IssError, UrlBuildError

__all__ = [
    "api",
    "chunks",
    "cursor",
    "errors",
    "persistence",
    "Cursor",
    "MarketKind",
    "get_candles",
    "get_stock_candles",
    "get_currency_candles",
    "IssError",
    "UrlBuildError",
    "FetchError",
    "DecodeError",
]
