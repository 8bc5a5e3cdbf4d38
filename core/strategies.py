# core/strategies.py
from __future__ import annotations

# Strategies are executed by the backend; the dashboard only needs the id it
# posts as "strategy" and a label for the dropdown.
strategy_registry: dict[str, dict[str, str]] = {
    "swing": {
        "label": "Swing Strategy (ATR/MACD/RSI)",
    },
    "momentum": {
        "label": "Momentum (fast)",
    },
}


def strategy_options() -> list[dict[str, str]]:
    return [{"label": meta["label"], "value": key} for key, meta in strategy_registry.items()]
