# app/layout.py
import datetime

from dash import dcc, html, dash_table
import dash_bootstrap_components as dbc

from core.strategies import strategy_options

DEFAULT_START_DATE = datetime.date(2024, 3, 1)


def build_layout(settings):
    return dbc.Container(
        [
            dcc.Location(id="url", refresh=False),
            dbc.Row(
                [
                    dbc.Col(html.H1("StockBot Dashboard"), width=8),
                    dbc.Col(
                        [
                            dbc.Button("Login with Kite", id="login-button", color="secondary", className="me-2"),
                            html.Span(id="token-indicator"),
                        ],
                        width=4,
                        className="text-end mt-2",
                    ),
                ],
                className="mb-3",
            ),

            dbc.Row(
                [
                    dbc.Col(
                        [
                            html.Label("Strategy"),
                            dcc.Dropdown(
                                id="strategy-dropdown",
                                options=strategy_options(),
                                value=settings.default_strategy,
                                clearable=False,
                                className="mb-2",
                            ),
                            html.Label("Date Range"),
                            dcc.DatePickerRange(
                                id="date-range",
                                start_date=DEFAULT_START_DATE,
                                end_date=datetime.date.today(),
                                display_format="YYYY-MM-DD",
                                className="mb-2",
                            ),
                            html.Div(
                                [
                                    dbc.Button("Run Now", id="run-button", color="primary", className="me-2"),
                                    dbc.Button(
                                        "Cancel", id="cancel-button", color="warning", className="me-2", disabled=True
                                    ),
                                    dbc.Button("Refresh History", id="refresh-button", color="light"),
                                ],
                                className="mt-2",
                            ),
                            html.Div(id="status-output", className="mt-3"),
                        ],
                        width=4,
                    ),
                    dbc.Col(
                        [
                            dcc.Graph(id="equity-graph"),
                            dcc.Graph(id="win-loss-graph"),
                            html.Div(id="summary-output", className="mb-2"),
                        ],
                        width=8,
                    ),
                ]
            ),

            html.Hr(),
            html.H4("History"),
            dash_table.DataTable(
                id="history-table",
                columns=[{"name": k, "id": k} for k in ("Run", "Strategy", "Trades", "Summary")],
                data=[],
                page_size=10,
                style_table={"overflowX": "auto"},
                style_cell={"textAlign": "center"},
            ),

            # Enabled only while a job is being submitted or polled
            dcc.Interval(
                id="poll-interval",
                interval=int(settings.poll_interval * 1000),
                n_intervals=0,
                disabled=True,
            ),
            dcc.Store(id="action-store"),
            dcc.Store(id="login-url-store"),
            html.Div(id="login-opened", style={"display": "none"}),
        ],
        fluid=True,
    )
