#!/usr/bin/env python3
from __future__ import annotations

from contextlib import contextmanager, redirect_stderr, redirect_stdout
import csv
import io
import json
from pathlib import Path
import shutil
import sys
from urllib.error import URLError
from urllib.parse import parse_qs, urlsplit


def _proj_root() -> Path:
    return Path(__file__).resolve().parents[2]


_root = _proj_root()
if str(_root) not in sys.path:
    sys.path.append(str(_root))

from moex_data_feed.iss import api as api_mod  # noqa: E402
import moex_data_feed.iss.cli as cli_mod  # noqa: E402
from moex_data_feed.iss.cli import RunConfig, main as cli_main, parse_args, run_once  # noqa: E402


META = {"begin": {"type": "datetime"}, "open": {"type": "double"}, "close": {"type": "double"}, "volume": {"type": "double"}}
COLS = ["begin", "open", "close", "volume"]


def _fake_iss(rows, page_size=2, fail_from=None):
    seen = []

    def http_get(url):
        start = int(parse_qs(urlsplit(url).query)["start"][0])
        seen.append(start)
        if fail_from is not None and start >= fail_from:
            raise URLError("connection reset")
        data = rows[start:start + page_size]
        return json.dumps({"candles": {"metadata": META, "columns": COLS, "data": data}}).encode()

    return http_get, seen


@contextmanager
def _stub_get_candles(http_get):
    """Route the CLI's get_candles through a fake transport."""

    captured = {}

    def fake_get_candles(kind, symbol, start, interval="1", end="", **kwargs):
        captured.update(kind=kind, symbol=symbol, start=start, interval=interval, end=end, **kwargs)
        kwargs.pop("timeout", None)
        return api_mod.get_candles(kind, symbol, start, interval, end, http_get=http_get, **kwargs)

    orig = cli_mod.get_candles
    cli_mod.get_candles = fake_get_candles  # type: ignore
    try:
        yield captured
    finally:
        cli_mod.get_candles = orig  # type: ignore


ROWS = [
    ["2024-03-01 10:00:00", 100.0, 100.5, 10],
    ["2024-03-01 10:01:00", 101.0, 101.5, 11],
    ["2024-03-01 10:02:00", 102.0, 102.5, 12],
]


def _tmp(name: str) -> Path:
    d = _root / '.tmp' / 'feed_tests' / name
    if d.exists():
        shutil.rmtree(d)
    return d


def test_parse_args_defaults():
    cfg = parse_args(["--ticker", "SBER", "--from", "2024-03-01"])
    assert cfg.ticker == "SBER"
    assert cfg.start == "2024-03-01"
    assert cfg.end == ""
    assert cfg.interval == "1"
    assert cfg.market == api_mod.MarketKind.EQUITY
    assert cfg.out_path is None
    assert cfg.timeout == cli_mod.DEFAULT_TIMEOUT

    cfg2 = parse_args(["--ticker", "USD000UTSTOM", "--from", "2024-03-01", "--market", "currency", "--till", "2024-03-02", "--timeout", "0"])
    assert cfg2.market == api_mod.MarketKind.CURRENCY
    assert cfg2.end == "2024-03-02"
    assert cfg2.timeout is None


def test_run_once_writes_csv_file():
    http_get, seen = _fake_iss(ROWS)
    out = _tmp('cli') / 'sber.csv'
    cfg = RunConfig(ticker="SBER", start="2024-03-01", out_path=out, debug=True)
    err = io.StringIO()
    with _stub_get_candles(http_get) as captured, redirect_stderr(err):
        code = run_once(cfg)
    assert code == 0
    assert captured["timeout"] == cli_mod.DEFAULT_TIMEOUT
    assert seen == [0, 2, 3]
    with out.open(newline="", encoding="utf-8") as fh:
        lines = list(csv.reader(fh))
    assert lines[0] == COLS
    assert len(lines) == 4
    assert lines[1] == ["2024-03-01T10:00:00+03:00", "100.0", "100.5", "10"]
    assert "rows=3" in err.getvalue()


def test_run_once_to_stdout():
    http_get, _ = _fake_iss(ROWS, page_size=5)
    buf = io.StringIO()
    with _stub_get_candles(http_get), redirect_stdout(buf):
        code = run_once(RunConfig(ticker="SBER", start="2024-03-01"))
    assert code == 0
    assert buf.getvalue().splitlines()[0] == "begin,open,close,volume"
    assert len(buf.getvalue().splitlines()) == 4


def test_run_once_mid_stream_failure():
    http_get, _ = _fake_iss(ROWS, page_size=2, fail_from=2)
    out = _tmp('cli_fail') / 'sber.csv'
    err = io.StringIO()
    with _stub_get_candles(http_get), redirect_stderr(err):
        code = run_once(RunConfig(ticker="SBER", start="2024-03-01", out_path=out))
    assert code == 1
    assert len(out.read_text(encoding="utf-8").splitlines()) == 3  # header + 2 rows
    assert "[ERROR] stopped after 2 rows" in err.getvalue()


def test_run_once_first_page_failure():
    http_get, _ = _fake_iss(ROWS, fail_from=0)
    out = _tmp('cli_first') / 'sber.csv'
    err = io.StringIO()
    with _stub_get_candles(http_get), redirect_stderr(err):
        code = run_once(RunConfig(ticker="SBER", start="2024-03-01", out_path=out))
    assert code == 2
    assert not out.exists()
    assert err.getvalue().startswith("[ERROR]")


def test_main_currency():
    http_get, _ = _fake_iss(ROWS[:1])
    out = _tmp('cli_main') / 'usd.csv'
    with _stub_get_candles(http_get) as captured:
        code = cli_main(["--ticker", "USD000UTSTOM", "--from", "2024-03-01", "--market", "currency", "--out", str(out)])
    assert code == 0
    assert captured["kind"] == api_mod.MarketKind.CURRENCY
    assert len(out.read_text(encoding="utf-8").splitlines()) == 2


def main() -> None:
    test_parse_args_defaults()
    test_run_once_writes_csv_file()
    test_run_once_to_stdout()
    test_run_once_mid_stream_failure()
    test_run_once_first_page_failure()
    test_main_currency()
    print('cli tests OK')


if __name__ == '__main__':
    main()
