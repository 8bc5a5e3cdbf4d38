# core/normalizer.py
"""Convert backend run records into a chart-ready model.

Backend variants disagree on field names: the equity sample may be
``{"date": ..., "portfolio_equity": ...}``, ``{"Date": ..., "Total": ...}``
or a bare ``[date, value]`` pair, and trade P&L may live under ``PnL``,
``pnl`` or ``P&L``.  Each value is therefore read through an ordered tuple
of extraction strategies; the first strategy that yields a value wins.

Nothing in this module raises on malformed input.  Samples that cannot be
read are dropped from the chart and counted in ``ChartModel.skipped_points``.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Sequence

import pandas as pd

MISSING = object()

Extractor = Callable[[Any], Any]


def by_field(name: str) -> Extractor:
    def extract(item: Any) -> Any:
        if isinstance(item, Mapping) and item.get(name) is not None:
            return item[name]
        return MISSING

    extract.__name__ = f"field[{name}]"
    return extract


def by_index(position: int) -> Extractor:
    def extract(item: Any) -> Any:
        if isinstance(item, (list, tuple)) and len(item) > position and item[position] is not None:
            return item[position]
        return MISSING

    extract.__name__ = f"index[{position}]"
    return extract


DATE_STRATEGIES: tuple[Extractor, ...] = (
    by_field("date"),
    by_field("Date"),
    by_field("timestamp"),
    by_field("time"),
    by_index(0),
)

EQUITY_STRATEGIES: tuple[Extractor, ...] = (
    by_field("portfolio_equity"),
    by_field("equity"),
    by_field("Equity"),
    by_field("value"),
    by_field("total"),
    by_field("Total"),
    by_index(1),
)

PNL_STRATEGIES: tuple[Extractor, ...] = (
    by_field("PnL"),
    by_field("pnl"),
    by_field("P&L"),
    by_field("profit"),
    by_field("pl"),
    by_index(3),
)

SERIES_FIELDS = ("equity_curve", "equitySeries", "equity_series", "equity")
TRADE_FIELDS = ("trades", "trade_log", "Trades")
SUMMARY_FIELDS = ("summary", "summaryMetrics", "summary_metrics", "metrics")
WIN_RATE_FIELDS = ("win_rate", "winRate", "Win Rate", "win_rate_pct")

# percentage points
WIN_RATE_TOLERANCE = 0.01


def first_match(item: Any, strategies: Iterable[Extractor]) -> Any:
    for strategy in strategies:
        value = strategy(item)
        if value is not MISSING:
            return value
    return MISSING


def to_number(value: Any) -> float | None:
    """Finite float or None. Booleans are not numbers here."""
    if value is MISSING or value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace(",", "")
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def to_timestamp(value: Any) -> pd.Timestamp | None:
    if value is MISSING or not isinstance(value, (str, date, datetime, pd.Timestamp)):
        return None
    try:
        ts = pd.Timestamp(value)
    except (TypeError, ValueError):
        return None
    if pd.isna(ts):
        return None
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC").tz_localize(None)
    return ts


def _format_date(ts: pd.Timestamp) -> str:
    if ts == ts.normalize():
        return ts.strftime("%Y-%m-%d")
    return ts.isoformat()


@dataclass(frozen=True)
class EquityPoint:
    date: str
    equity: float


@dataclass(frozen=True)
class ChartModel:
    equity_points: tuple[EquityPoint, ...] = ()
    win_count: int = 0
    loss_count: int = 0
    skipped_points: int = 0
    summary: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    summary_source: str = "derived"
    win_rate_consistent: bool | None = None

    @property
    def trade_count(self) -> int:
        return self.win_count + self.loss_count

    @property
    def has_equity(self) -> bool:
        return bool(self.equity_points)

    @property
    def has_trades(self) -> bool:
        return self.trade_count > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "equity_points": [{"date": p.date, "equity": p.equity} for p in self.equity_points],
            "win_count": self.win_count,
            "loss_count": self.loss_count,
            "skipped_points": self.skipped_points,
            "summary": dict(self.summary),
            "summary_source": self.summary_source,
            "win_rate_consistent": self.win_rate_consistent,
        }


def _first_field(record: Mapping[str, Any], names: Sequence[str]) -> Any:
    for name in names:
        if record.get(name) is not None:
            return record[name]
    return None


def _as_sequence(value: Any) -> list[Any]:
    if isinstance(value, Mapping):
        # {"2024-01-01": 100.0, ...}
        return [list(pair) for pair in value.items()]
    if isinstance(value, (list, tuple)):
        return list(value)
    return []


def extract_equity(series: Any) -> tuple[tuple[EquityPoint, ...], int]:
    """Ordered equity points plus the count of samples that were dropped."""
    keyed: list[tuple[pd.Timestamp, EquityPoint]] = []
    skipped = 0
    for item in _as_sequence(series):
        ts = to_timestamp(first_match(item, DATE_STRATEGIES))
        equity = to_number(first_match(item, EQUITY_STRATEGIES))
        if ts is None or equity is None:
            skipped += 1
            continue
        keyed.append((ts, EquityPoint(date=_format_date(ts), equity=equity)))
    keyed.sort(key=lambda pair: pair[0])
    return tuple(point for _, point in keyed), skipped


def trade_pnl(trade: Any) -> float | None:
    return to_number(first_match(trade, PNL_STRATEGIES))


def classify_trade(trade: Any) -> str:
    """'win' when P&L is strictly positive, 'loss' for everything else."""
    pnl = trade_pnl(trade)
    if pnl is not None and pnl > 0:
        return "win"
    return "loss"


def count_wins_losses(trades: Iterable[Any]) -> tuple[int, int]:
    wins = losses = 0
    for trade in trades:
        if classify_trade(trade) == "win":
            wins += 1
        else:
            losses += 1
    return wins, losses


def derive_summary(trades: Sequence[Any]) -> dict[str, Any]:
    wins, _ = count_wins_losses(trades)
    pnls = [p for p in (trade_pnl(t) for t in trades) if p is not None]
    total = len(trades)
    return {
        "total_pnl": round(sum(pnls), 2),
        "win_rate": round(wins / total * 100, 2) if total else 0.0,
        "trades": total,
    }


def reported_win_rate(summary: Mapping[str, Any]) -> float | None:
    """Win rate in percent, accepting '55%' strings and 0..1 fractions."""
    raw = _first_field(summary, WIN_RATE_FIELDS)
    if raw is None:
        return None
    if isinstance(raw, str) and raw.strip().endswith("%"):
        return to_number(raw.strip()[:-1])
    number = to_number(raw)
    if number is None:
        return None
    if 0 <= number <= 1:
        return number * 100
    return number


def normalize_run(record: Any) -> ChartModel:
    if not isinstance(record, Mapping):
        return ChartModel()

    points, skipped = extract_equity(_first_field(record, SERIES_FIELDS))
    trades = _as_sequence(_first_field(record, TRADE_FIELDS))
    wins, losses = count_wins_losses(trades)

    reported = _first_field(record, SUMMARY_FIELDS)
    consistent: bool | None = None
    if isinstance(reported, Mapping) and reported:
        summary = dict(reported)
        source = "backend"
        rate = reported_win_rate(summary)
        if rate is not None and trades:
            derived = wins / len(trades) * 100
            consistent = abs(rate - derived) <= WIN_RATE_TOLERANCE
    else:
        summary = derive_summary(trades)
        source = "derived"

    return ChartModel(
        equity_points=points,
        win_count=wins,
        loss_count=losses,
        skipped_points=skipped,
        summary=MappingProxyType(summary),
        summary_source=source,
        win_rate_consistent=consistent,
    )
