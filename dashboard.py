# dashboard.py
import atexit

from dash import Dash
import dash_bootstrap_components as dbc

from app.callbacks import register_callbacks
from app.layout import build_layout
from core.config import configure_logging, get_settings
from core.controller import DashboardController
from core.runtime import AsyncRunner


def create_app(settings=None, runner=None, controller=None):
    settings = settings or get_settings()
    runner = runner or AsyncRunner()
    controller = controller or DashboardController(settings)

    app = Dash(
        __name__,
        title="StockBot Dashboard",
        external_stylesheets=[dbc.themes.BOOTSTRAP],
        suppress_callback_exceptions=True,
    )
    app.layout = build_layout(settings)
    register_callbacks(app, controller, runner)

    def _teardown():
        # cancel any poll loop before the loop thread goes away
        runner.run(controller.close(), timeout=5)
        runner.stop()

    atexit.register(_teardown)
    return app


if __name__ == "__main__":
    configure_logging()
    create_app().run(debug=False)
