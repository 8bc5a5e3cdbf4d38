# core/figures.py
from __future__ import annotations

from typing import Any, Iterable

import plotly.graph_objs as go

from core.history import RunRecord, run_timestamp
from core.normalizer import ChartModel

WIN_COLOR = "#2ecc71"
LOSS_COLOR = "#e74c3c"
EQUITY_COLOR = "#16a085"


def _empty_figure(title: str, message: str) -> go.Figure:
    fig = go.Figure()
    fig.update_layout(
        title=title,
        xaxis={"visible": False},
        yaxis={"visible": False},
        annotations=[{"text": message, "showarrow": False, "font": {"size": 14}}],
    )
    return fig


def get_equity_curve_figure(chart: ChartModel | None) -> go.Figure:
    if chart is None or not chart.has_equity:
        return _empty_figure("Equity Growth", "No equity data available yet, run a backtest.")

    fig = go.Figure()
    fig.add_trace(go.Scatter(
        x=[p.date for p in chart.equity_points],
        y=[p.equity for p in chart.equity_points],
        mode="lines",
        name="Portfolio Value",
        line=dict(color=EQUITY_COLOR),
    ))
    fig.update_layout(
        title="Equity Growth",
        xaxis_title="Date",
        yaxis_title="Portfolio Value",
        xaxis_tickformat="%m/%d",
        hovermode="x unified",
    )
    return fig


def get_win_loss_figure(chart: ChartModel | None) -> go.Figure:
    if chart is None or not chart.has_trades:
        return _empty_figure("Win / Loss", "No trades yet, run a backtest to populate Win/Loss.")

    fig = go.Figure()
    fig.add_trace(go.Pie(
        labels=["Wins", "Losses"],
        values=[chart.win_count, chart.loss_count],
        hole=0.6,
        marker=dict(colors=[WIN_COLOR, LOSS_COLOR]),
        textinfo="label+value",
        sort=False,
    ))
    fig.update_layout(title="Win / Loss")
    return fig


def format_summary(chart: ChartModel | None) -> str:
    if chart is None:
        return ""
    parts = [f"{label}: {value}" for label, value in chart.summary.items()]
    if chart.skipped_points:
        parts.append(f"Skipped samples: {chart.skipped_points}")
    if chart.win_rate_consistent is False:
        parts.append("Win rate mismatch")
    return " | ".join(parts)


def get_history_rows(history: Iterable[RunRecord]) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for run in history:
        ts = run_timestamp(run)
        summary = run.get("summary") or run.get("metrics") or {}
        trades = run.get("trades") or []
        rows.append({
            "Run": ts.strftime("%Y-%m-%d %H:%M") if ts is not None else str(run.get("timestamp") or ""),
            "Strategy": run.get("strategy") or run.get("strategyId") or run.get("strategy_id") or "",
            "Trades": len(trades) if isinstance(trades, list) else "",
            "Summary": ", ".join(f"{k}={v}" for k, v in summary.items()) if isinstance(summary, dict) else "",
        })
    return rows
