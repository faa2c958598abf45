from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .api import DEFAULT_INTERVAL, ISS_URL, MarketKind, build_candles_url, get_candles
from .errors import IssError
from .persistence import open_output, write_csv


DEFAULT_TIMEOUT = 30.0


@dataclass
class RunConfig:
    ticker: str
    start: str
    end: str = ""
    market: MarketKind = MarketKind.EQUITY
    interval: str = DEFAULT_INTERVAL
    out_path: Optional[Path] = None
    base_url: str = ISS_URL
    timeout: Optional[float] = DEFAULT_TIMEOUT
    debug: bool = False


def run_once(cfg: RunConfig) -> int:
    # First page is fetched here; failures mean nothing was written
    try:
        if cfg.debug:
            url = build_candles_url(cfg.market, cfg.ticker, cfg.start, cfg.interval, cfg.end, base_url=cfg.base_url)
            print(f"[DEBUG] query={url}", file=sys.stderr)
        cursor = get_candles(
            cfg.market,
            cfg.ticker,
            cfg.start,
            cfg.interval,
            cfg.end,
            base_url=cfg.base_url,
            timeout=cfg.timeout,
        )
    except IssError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 2

    with open_output(cfg.out_path) as fh:
        rows = write_csv(cursor, fh)

    if cursor.error is not None:
        print(f"[ERROR] stopped after {rows} rows: {cursor.error}", file=sys.stderr)
        return 1

    if cfg.debug:
        dest = cfg.out_path if cfg.out_path is not None else "stdout"
        print(f"[DEBUG] market={cfg.market.value} ticker={cfg.ticker} rows={rows} out={dest}", file=sys.stderr)
    return 0


def parse_args(argv: Optional[list[str]] = None) -> RunConfig:
    p = argparse.ArgumentParser(description="Stream MOEX ISS candles as CSV")
    p.add_argument("--ticker", required=True, help="Security id, e.g. SBER or USD000UTSTOM")
    p.add_argument("--from", dest="start", required=True, help="Start of requested interval, e.g. 2024-03-01")
    p.add_argument("--till", dest="end", default="", help="End of requested interval (default: up to latest)")
    p.add_argument(
        "--market",
        choices=[m.value for m in MarketKind],
        default=MarketKind.EQUITY.value,
        help="Market kind (default: equity)",
    )
    p.add_argument("--interval", default=DEFAULT_INTERVAL, help="Candle interval in ISS units (default: 1 minute)")
    p.add_argument("--out", type=Path, default=None, help="CSV output path (default: stdout)")
    p.add_argument("--base-url", default=ISS_URL, help="ISS API root")
    p.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT, help="Network timeout per request in seconds")
    p.add_argument("--debug", action="store_true", help="Verbose logging")
    args = p.parse_args(argv)

    if not args.ticker or not args.start:
        p.error("--ticker and --from must be non-empty")

    return RunConfig(
        ticker=args.ticker,
        start=args.start,
        end=args.end,
        market=MarketKind(args.market),
        interval=args.interval,
        out_path=args.out,
        base_url=args.base_url,
        timeout=args.timeout if args.timeout > 0 else None,
        debug=bool(args.debug),
    )


def main(argv: Optional[list[str]] = None) -> int:
    cfg = parse_args(argv)
    try:
        return run_once(cfg)
    except Exception as e:  # surface clear error message
        print(f"[ERROR] {e}", file=sys.stderr)
        if cfg.debug:
            raise
        return 3


if __name__ == "__main__":
    raise SystemExit(main())
