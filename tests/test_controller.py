import asyncio

import httpx

from core.controller import AUTH_REQUIRED_MESSAGE, DashboardController, ViewState
from core.jobs import AsyncJob, Rejected

from conftest import FakeBackend, sample_run

HEALTHY = {"GET /health": {"token_valid": True}}


def _controller(settings, fake):
    return DashboardController(settings, transport=fake.transport())


def test_scenario_a_async_job_completes_and_loads_history(settings):
    latest = sample_run("2024-03-09T12:00:00")
    fake = FakeBackend({
        **HEALTHY,
        "POST /run_strategy": {"job_id": "J1"},
        "GET /job_status/J1": [{"status": "running"}, {"status": "running"}, {"status": "completed"}],
        "GET /backtests": {"status": "ok", "data": [latest, sample_run("2024-03-01T12:00:00")]},
    })

    async def _run():
        controller = _controller(settings, fake)
        await controller.check_auth()
        outcome = await controller.submit("swing", "2024-03-01", "2024-03-08")
        assert outcome == AsyncJob("J1")
        assert controller.view_state is ViewState.POLLING
        assert controller.snapshot().busy
        await controller.wait()
        snap = controller.snapshot()
        await controller.close()
        return snap

    snap = asyncio.run(_run())
    assert fake.calls["GET /job_status/J1"] == 3
    assert fake.calls["GET /backtests"] == 1
    assert snap.view_state is ViewState.READY
    assert snap.chart is not None
    assert snap.chart.win_count == 1 and snap.chart.loss_count == 1
    assert snap.history[0]["timestamp"] == "2024-03-09T12:00:00"
    assert snap.job_id is None


def test_scenario_b_rejection_moves_to_error(settings):
    fake = FakeBackend({**HEALTHY, "POST /run_strategy": {"detail": "invalid date range"}})

    async def _run():
        controller = _controller(settings, fake)
        await controller.check_auth()
        outcome = await controller.submit("swing", "2024-06-01", "2024-03-01")
        return outcome, controller.snapshot()

    outcome, snap = asyncio.run(_run())
    assert isinstance(outcome, Rejected)
    assert snap.view_state is ViewState.ERROR
    assert "invalid date range" in snap.status_message


def test_missing_token_blocks_submit_before_any_request(settings):
    fake = FakeBackend({"GET /health": {"token_valid": False}, "POST /run_strategy": {"job_id": "J1"}})

    async def _run():
        controller = _controller(settings, fake)
        await controller.check_auth()
        outcome = await controller.submit("swing", "2024-03-01", "2024-03-08")
        return outcome, controller.snapshot()

    outcome, snap = asyncio.run(_run())
    assert outcome is None
    assert snap.status_message == AUTH_REQUIRED_MESSAGE
    assert snap.view_state is ViewState.IDLE
    assert fake.calls["POST /run_strategy"] == 0


def test_sync_result_goes_straight_to_ready(settings):
    fake = FakeBackend({**HEALTHY, "POST /run_strategy": {"status": "ok", "result": sample_run()}})

    async def _run():
        controller = _controller(settings, fake)
        await controller.check_auth()
        await controller.submit("momentum", "2024-03-01", "2024-03-08")
        return controller.snapshot()

    snap = asyncio.run(_run())
    assert snap.view_state is ViewState.READY
    assert len(snap.chart.equity_points) == 3
    assert fake.calls.get("GET /job_status/J1", 0) == 0


def test_duplicate_submit_ignored_while_polling(settings):
    fake = FakeBackend({
        **HEALTHY,
        "POST /run_strategy": {"job_id": "J1"},
        "GET /job_status/J1": {"status": "running"},
    })
    settings = settings.model_copy(update={"poll_interval": 60.0})

    async def _run():
        controller = DashboardController(settings, transport=fake.transport())
        await controller.check_auth()
        await controller.submit("swing", "2024-03-01", "2024-03-08")
        second = await controller.submit("swing", "2024-03-01", "2024-03-08")
        await controller.close()
        return second

    assert asyncio.run(_run()) is None
    assert fake.calls["POST /run_strategy"] == 1


def test_superseding_submit_cancels_previous_poll(settings):
    fake = FakeBackend({
        **HEALTHY,
        "POST /run_strategy": [{"job_id": "OLD"}, {"job_id": "NEW"}],
        "GET /job_status/OLD": {"status": "completed", "result": sample_run("2020-01-01")},
        "GET /job_status/NEW": {"status": "running"},
    })
    settings = settings.model_copy(update={"poll_interval": 60.0})

    async def _run():
        controller = DashboardController(settings, transport=fake.transport())
        await controller.check_auth()
        await controller.submit("swing", "2024-03-01", "2024-03-08")
        old_task = controller.poller.task
        await controller.submit("momentum", "2024-03-01", "2024-03-08", supersede=True)
        await asyncio.sleep(0)
        loops = [t for t in asyncio.all_tasks() if t.get_name().startswith("job-poll-")]
        snap = controller.snapshot()
        await controller.close()
        return old_task, loops, snap

    old_task, loops, snap = asyncio.run(_run())
    assert old_task.done()
    assert [t.get_name() for t in loops] == ["job-poll-NEW"]
    assert snap.job_id == "NEW"
    assert snap.view_state is ViewState.POLLING
    assert fake.calls["GET /job_status/OLD"] == 0


def test_teardown_discards_late_terminal_status(settings):
    fake = FakeBackend({
        **HEALTHY,
        "POST /run_strategy": {"job_id": "J1"},
        "GET /job_status/J1": {"status": "completed", "result": sample_run()},
    })

    async def _run():
        controller = _controller(settings, fake)
        gate = fake.hold("GET /job_status/J1")
        await controller.check_auth()
        await controller.submit("swing", "2024-03-01", "2024-03-08")
        task = controller.poller.task
        while fake.calls["GET /job_status/J1"] == 0:
            await asyncio.sleep(0)
        controller.cancel()
        gate.set()
        await asyncio.gather(task, return_exceptions=True)
        return controller.snapshot()

    snap = asyncio.run(_run())
    assert snap.chart is None
    assert snap.view_state is ViewState.IDLE
    assert snap.job_id is None


def test_started_without_job_id_refreshes_history_after_delay(settings):
    fake = FakeBackend({
        **HEALTHY,
        "POST /run_strategy": {"status": "started"},
        "GET /backtests": {"status": "ok", "data": [sample_run()]},
    })

    async def _run():
        controller = _controller(settings, fake)
        await controller.check_auth()
        await controller.submit("swing", "2024-03-01", "2024-03-08")
        assert controller.view_state is ViewState.POLLING
        await controller.wait()
        return controller.snapshot()

    snap = asyncio.run(_run())
    assert snap.view_state is ViewState.READY
    assert fake.calls["GET /backtests"] == 1


def test_completed_job_with_empty_history_is_an_error(settings):
    fake = FakeBackend({
        **HEALTHY,
        "POST /run_strategy": {"job_id": "J1"},
        "GET /job_status/J1": {"status": "completed"},
        "GET /backtests": {"status": "ok", "data": []},
    })

    async def _run():
        controller = _controller(settings, fake)
        await controller.check_auth()
        await controller.submit("swing", "2024-03-01", "2024-03-08")
        await controller.wait()
        return controller.snapshot()

    snap = asyncio.run(_run())
    assert snap.view_state is ViewState.ERROR
    assert "could not be loaded" in snap.status_message


def test_failed_job_surfaces_error_text(settings):
    fake = FakeBackend({
        **HEALTHY,
        "POST /run_strategy": {"job_id": "J1"},
        "GET /job_status/J1": {"status": "failed", "error": "No data for NIFTY 100 in range"},
    })

    async def _run():
        controller = _controller(settings, fake)
        await controller.check_auth()
        await controller.submit("swing", "2024-03-01", "2024-03-08")
        await controller.wait()
        return controller.snapshot()

    snap = asyncio.run(_run())
    assert snap.view_state is ViewState.ERROR
    assert snap.status_message == "No data for NIFTY 100 in range"


def test_refresh_failure_keeps_previous_chart(settings):
    fake = FakeBackend({"GET /backtests": {"status": "ok", "data": [sample_run()]}})

    async def _run():
        controller = _controller(settings, fake)
        first = await controller.refresh()
        fake.set("GET /backtests", httpx.ConnectError("offline"))
        second = await controller.refresh()
        return first, second, controller.snapshot()

    first, second, snap = asyncio.run(_run())
    assert first is not None and second is None
    assert snap.chart == first
    assert snap.view_state is ViewState.READY
    assert snap.status_message.startswith("Could not load history")


def test_health_falls_back_to_config(settings):
    fake = FakeBackend({"GET /config": {"token_valid": True}})

    async def _run():
        controller = _controller(settings, fake)
        return await controller.check_auth()

    assert asyncio.run(_run()) is True
    assert fake.calls["GET /health"] == 1


def test_unreachable_backend_reports_message(settings):
    fake = FakeBackend({"GET /health": httpx.ConnectError("down")})

    async def _run():
        controller = _controller(settings, fake)
        ok = await controller.check_auth()
        return ok, controller.status_message

    assert asyncio.run(_run()) == (False, "Failed to contact backend")


def test_login_url_and_redirect_markers(settings):
    fake = FakeBackend({"GET /generate_token_url": {"login_url": "https://kite.example/login?api_key=x"}})

    async def _run():
        controller = _controller(settings, fake)
        url = await controller.request_login_url()
        opened = controller.status_message
        controller.handle_login_redirect({"login": "error", "reason": "token exchange failed"})
        return url, opened, controller.status_message

    url, opened, after = asyncio.run(_run())
    assert url == "https://kite.example/login?api_key=x"
    assert "complete and return here" in opened
    assert after == "Kite login failed: token exchange failed"


def test_missing_login_url(settings):
    fake = FakeBackend({"GET /generate_token_url": {}})

    async def _run():
        controller = _controller(settings, fake)
        url = await controller.request_login_url()
        return url, controller.status_message

    assert asyncio.run(_run()) == (None, "Could not get login URL")


def test_network_failure_on_submit_keeps_prior_view(settings):
    fake = FakeBackend({**HEALTHY, "GET /backtests": {"status": "ok", "data": [sample_run()]}})

    async def _run():
        controller = _controller(settings, fake)
        await controller.start()
        before = controller.snapshot()
        fake.set("POST /run_strategy", httpx.ConnectError("offline"))
        outcome = await controller.submit("swing", "2024-03-01", "2024-06-30")
        return before, outcome, controller.snapshot()

    before, outcome, snap = asyncio.run(_run())
    assert before.view_state is ViewState.READY
    assert outcome == Rejected("Error starting backtest", network=True)
    assert snap.view_state is ViewState.READY
    assert snap.chart == before.chart
    assert snap.status_message == "Error starting backtest"


def test_network_failure_without_chart_returns_to_idle(settings):
    fake = FakeBackend({**HEALTHY, "POST /run_strategy": httpx.ConnectError("offline")})

    async def _run():
        controller = _controller(settings, fake)
        await controller.check_auth()
        await controller.submit("swing", "2024-03-01", "2024-06-30")
        return controller.snapshot()

    assert asyncio.run(_run()).view_state is ViewState.IDLE


def test_cancel_from_page_stops_polling(settings):
    fake = FakeBackend({**HEALTHY, "POST /run_strategy": {"job_id": "J5"}, "GET /job_status/J5": {"status": "running"}})

    async def _run():
        controller = _controller(settings, fake)
        await controller.check_auth()
        await controller.submit("swing", "2024-03-01", "2024-06-30")
        controller.cancel(reason="Backtest cancelled")
        await controller.wait()
        return controller.snapshot(), controller.poller.active

    snap, active = asyncio.run(_run())
    assert snap.view_state is ViewState.IDLE
    assert snap.job_id is None
    assert snap.status_message == "Backtest cancelled"
    assert not active
