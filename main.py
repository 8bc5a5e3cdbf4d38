# main.py
import argparse
import asyncio
import datetime

import plotly.io as pio

from core.config import configure_logging, get_settings
from core.controller import DashboardController, ViewState
from core.figures import format_summary, get_equity_curve_figure, get_win_loss_figure

pio.renderers.default = "browser"


async def run_once(args):
    controller = DashboardController(get_settings())
    try:
        await controller.check_auth()
        outcome = await controller.submit(args.strategy, args.start, args.end)
        if outcome is None:
            print(controller.status_message)
            return None
        await controller.wait()
        print(controller.status_message)
        return controller.snapshot()
    finally:
        await controller.close()


def main():
    parser = argparse.ArgumentParser(description="Launch a backtest on the backend and wait for its results.")
    parser.add_argument("--strategy", default=get_settings().default_strategy)
    parser.add_argument("--start", default="2024-03-01")
    parser.add_argument("--end", default=datetime.date.today().isoformat())
    parser.add_argument("--show", action="store_true", help="open the charts in a browser")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()

    configure_logging(args.log_level)
    snap = asyncio.run(run_once(args))
    if snap is None or snap.view_state is not ViewState.READY:
        raise SystemExit(1)

    chart = snap.chart
    print(f"Wins: {chart.win_count} | Losses: {chart.loss_count}")
    print(format_summary(chart))

    if args.show:
        get_equity_curve_figure(chart).show()
        get_win_loss_figure(chart).show()


if __name__ == "__main__":
    main()
