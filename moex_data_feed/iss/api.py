from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo
from enum import Enum
from http.client import HTTPException
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
from urllib.error import URLError
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit
from urllib.request import Request, urlopen
import json

import pandas as pd

from .chunks import ChunkFetcher, Row
from .cursor import Cursor, prepare_cursor
from .errors import DecodeError, FetchError, IssError, UrlBuildError


ISS_URL = "https://iss.moex.com/iss"
USER_AGENT = "moex-data-feed/0.1"

# Moscow exchange time, fixed UTC+3 (no DST since 2014)
MSK = timezone(timedelta(hours=3), "MSK")
ISS_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

CANDLES_SERIES = "candles"
CANDLE_COLUMNS: Tuple[str, ...] = ("begin", "open", "close", "volume")
DEFAULT_INTERVAL = "1"


class MarketKind(str, Enum):
    EQUITY = "equity"
    CURRENCY = "currency"


ENDPOINT_TEMPLATES: Dict[MarketKind, str] = {
    MarketKind.EQUITY: "/engines/stock/markets/shares/securities/{symbol}/candles.json",
    MarketKind.CURRENCY: "/engines/currency/markets/selt/boards/cets/securities/{symbol}/candles.json",
}


def set_query_param(url: str, key: str, value: str) -> str:
    """Return `url` with query parameter `key` set to `value` (replacing any prior value)."""
    parts = urlsplit(url)
    q = dict(parse_qsl(parts.query, keep_blank_values=True))
    q[key] = str(value)
    return urlunsplit(parts._replace(query=urlencode(q)))


def set_non_empty_query_params(url: str, params: Mapping[str, str]) -> str:
    """Like set_query_param for each item, skipping empty values entirely."""
    parts = urlsplit(url)
    q = dict(parse_qsl(parts.query, keep_blank_values=True))
    for k, v in params.items():
        if v:
            q[k] = str(v)
    return urlunsplit(parts._replace(query=urlencode(q)))


def build_candles_url(
    kind: MarketKind | str,
    symbol: str,
    start: str,
    interval: str = DEFAULT_INTERVAL,
    end: str = "",
    columns: Sequence[str] = CANDLE_COLUMNS,
    base_url: str = ISS_URL,
) -> str:
    """Build the candles URL for one query, without the `start` page offset."""
    if not symbol:
        raise UrlBuildError("symbol must be a non-empty string")
    if not start:
        raise UrlBuildError("start of range must be a non-empty string")
    try:
        market = MarketKind(kind)
    except ValueError as e:
        raise UrlBuildError(f"unknown market kind: {kind!r}") from e

    base = urlsplit(base_url)
    if base.scheme not in ("http", "https") or not base.netloc:
        raise UrlBuildError(f"can't parse moex api url: {base_url!r}")

    endpoint = ENDPOINT_TEMPLATES[market].format(symbol=quote(symbol, safe=""))
    url = base_url.rstrip("/") + endpoint
    return set_non_empty_query_params(
        url,
        {
            f"{CANDLES_SERIES}.columns": ",".join(columns),
            "from": start,
            "interval": interval,
            "till": end,
        },
    )


def parse_iss_value(value: Any, iss_type: str, tz: tzinfo = MSK) -> Any:
    """Decode one raw ISS value according to its declared metadata type.

    Only `datetime` is special: string values are read as exchange-local time
    in `tz`. Anything else is returned unchanged.
    """
    if iss_type == "datetime" and isinstance(value, str):
        try:
            return datetime.strptime(value, ISS_DATETIME_FORMAT).replace(tzinfo=tz)
        except ValueError as e:
            raise DecodeError(f"can't parse moex datetime {value!r}: {e}") from e
    return value


def format_iss_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _http_get(url: str, timeout: Optional[float] = None) -> bytes:
    req = Request(url, headers={"User-Agent": USER_AGENT})
    if timeout is None:
        resp = urlopen(req)
    else:
        resp = urlopen(req, timeout=timeout)
    with resp:
        return resp.read()


class CandlesSource:
    """Page source for the ISS candles endpoint of any market kind.

    `http_get(url) -> bytes` is the transport; by default a urllib GET with
    the given `timeout` (None leaves the socket default in place).
    """

    def __init__(
        self,
        url: str,
        columns: Sequence[str] = CANDLE_COLUMNS,
        tz: tzinfo = MSK,
        http_get: Optional[Callable[[str], bytes]] = None,
        timeout: Optional[float] = None,
        series: str = CANDLES_SERIES,
    ):
        self.url = url
        self.columns: Tuple[str, ...] = tuple(columns)
        self.tz = tz
        self.series = series
        self._http_get = http_get or (lambda u: _http_get(u, timeout=timeout))
        self._positions: List[int] = []
        self._types: List[str] = []
        self._width = 0

    def page_url(self, offset: int) -> str:
        return set_query_param(self.url, "start", str(offset))

    def fetch_page(self, offset: int) -> List[Any]:
        url = self.page_url(offset)
        try:
            body = self._http_get(url)
        except IssError:
            raise
        except (URLError, HTTPException, OSError) as e:
            raise FetchError(f"can't call moex api: {e}") from e
        except Exception as e:
            # caller-supplied transports, http.client.InvalidURL, ...
            raise FetchError(f"can't call moex api: {type(e).__name__}: {e}") from e
        try:
            payload = json.loads(body)
        except ValueError as e:
            raise DecodeError(f"can't decode moex api response: {e}") from e
        return self._read_page(payload)

    def _read_page(self, payload: Any) -> List[Any]:
        block = payload.get(self.series) if isinstance(payload, dict) else None
        if not isinstance(block, dict):
            raise DecodeError(f"moex api response has no {self.series!r} block")
        data = block.get("data")
        if not isinstance(data, list):
            raise DecodeError(f"moex api response {self.series}.data is not a list")
        if not data:
            return data

        columns = block.get("columns")
        if not isinstance(columns, list):
            raise DecodeError(f"moex api response {self.series}.columns is not a list")
        metadata = block.get("metadata")
        if not isinstance(metadata, dict):
            raise DecodeError(f"moex api response {self.series}.metadata is not an object")

        positions = []
        types = []
        for name in self.columns:
            try:
                positions.append(columns.index(name))
            except ValueError:
                raise DecodeError(f"column {name!r} missing from moex api response") from None
            meta = metadata.get(name)
            if not isinstance(meta, dict) or not isinstance(meta.get("type"), str):
                raise DecodeError(f"column {name!r} has no type in moex api metadata")
            types.append(meta["type"])
        self._positions = positions
        self._types = types
        self._width = len(columns)
        return data

    def decode_row(self, raw: Any) -> Row:
        if not isinstance(raw, list) or len(raw) != self._width:
            raise DecodeError(f"malformed moex api row: {raw!r}")
        return [
            format_iss_value(parse_iss_value(raw[pos], typ, self.tz))
            for pos, typ in zip(self._positions, self._types)
        ]


def get_candles(
    kind: MarketKind | str,
    symbol: str,
    start: str,
    interval: str = DEFAULT_INTERVAL,
    end: str = "",
    *,
    base_url: str = ISS_URL,
    tz: tzinfo = MSK,
    http_get: Optional[Callable[[str], bytes]] = None,
    timeout: Optional[float] = None,
) -> Cursor:
    """Open a candles cursor for `symbol` on the given market.

    The first page is fetched before returning, so UrlBuildError, FetchError
    and DecodeError for it are raised here. Later failures are reported via
    `Cursor.error`.
    """
    url = build_candles_url(kind, symbol, start, interval, end, base_url=base_url)
    source = CandlesSource(url, tz=tz, http_get=http_get, timeout=timeout)
    return prepare_cursor(ChunkFetcher(source, source.columns))


def get_stock_candles(security: str, interval: str, start: str, end: str = "", **kwargs: Any) -> Cursor:
    return get_candles(MarketKind.EQUITY, security, start, interval, end, **kwargs)


def get_currency_candles(sec_id: str, interval: str, start: str, end: str = "", **kwargs: Any) -> Cursor:
    return get_candles(MarketKind.CURRENCY, sec_id, start, interval, end, **kwargs)


def rows_to_dataframe(rows: Iterable[Sequence[str]], columns: Sequence[str] = CANDLE_COLUMNS) -> pd.DataFrame:
    """Map decoded candle rows into a typed DataFrame.

    - begin: tz-aware datetime (exchange offset preserved)
    - other columns: float64, empty values become NaN
    - sorted ascending by begin
    """
    df = pd.DataFrame([list(r) for r in rows], columns=list(columns))
    for col in df.columns:
        if col == "begin":
            df[col] = pd.to_datetime(df[col], errors="coerce")
        else:
            df[col] = pd.to_numeric(df[col], errors="coerce").astype(float)
    if "begin" in df.columns and not df.empty:
        df = df.sort_values("begin", kind="mergesort").reset_index(drop=True)
    return df
