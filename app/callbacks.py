# app/callbacks.py
from urllib.parse import parse_qs

import dash
from dash import Input, Output, State, ctx
from dash.exceptions import PreventUpdate

from core.figures import format_summary, get_equity_curve_figure, get_history_rows, get_win_loss_figure


def parse_query(search):
    """'?login=error&reason=x' -> {'login': 'error', 'reason': 'x'}"""
    parsed = parse_qs((search or "").lstrip("?"))
    return {key: values[0] for key, values in parsed.items() if values}


def _day(value):
    return str(value)[:10] if value else None


def register_callbacks(app, controller, runner):
    @app.callback(
        Output("action-store", "data"),
        Output("login-url-store", "data"),
        Input("url", "search"),
        Input("login-button", "n_clicks"),
        Input("run-button", "n_clicks"),
        Input("cancel-button", "n_clicks"),
        Input("refresh-button", "n_clicks"),
        State("strategy-dropdown", "value"),
        State("date-range", "start_date"),
        State("date-range", "end_date"),
        State("action-store", "data"),
    )
    def handle_action(search, login_clicks, run_clicks, cancel_clicks, refresh_clicks,
                      strategy, start_date, end_date, counter):
        trigger = ctx.triggered_id
        login_url = dash.no_update

        if trigger is None or trigger == "url":
            query = parse_query(search)
            runner.run(controller.start())
            runner.call(lambda: controller.handle_login_redirect(query))
        elif trigger == "login-button":
            login_url = runner.run(controller.request_login_url()) or dash.no_update
        elif trigger == "run-button":
            if not (start_date and end_date):
                raise PreventUpdate
            runner.run(controller.submit(strategy, _day(start_date), _day(end_date)))
        elif trigger == "cancel-button":
            runner.call(lambda: controller.cancel(reason="Backtest cancelled"))
        elif trigger == "refresh-button":
            runner.run(controller.refresh())
        else:
            raise PreventUpdate

        # bump so the render callback re-reads the controller
        return (counter or 0) + 1, login_url

    app.clientside_callback(
        """
        function(url) {
            if (url) { window.open(url, "_blank"); }
            return "";
        }
        """,
        Output("login-opened", "children"),
        Input("login-url-store", "data"),
        prevent_initial_call=True,
    )

    @app.callback(
        Output("status-output", "children"),
        Output("token-indicator", "children"),
        Output("run-button", "disabled"),
        Output("cancel-button", "disabled"),
        Output("poll-interval", "disabled"),
        Output("equity-graph", "figure"),
        Output("win-loss-graph", "figure"),
        Output("summary-output", "children"),
        Output("history-table", "data"),
        Input("action-store", "data"),
        Input("poll-interval", "n_intervals"),
    )
    def render(_counter, _ticks):
        snap = runner.call(controller.snapshot)
        token = "Kite token present" if snap.token_valid else "No Kite token"
        return (
            snap.status_message,
            token,
            snap.busy,
            not snap.busy,
            not snap.busy,
            get_equity_curve_figure(snap.chart),
            get_win_loss_figure(snap.chart),
            format_summary(snap.chart),
            get_history_rows(snap.history),
        )
