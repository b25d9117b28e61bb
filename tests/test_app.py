"""Tests for sysmon application."""

import pytest
from conftest import ScriptedSource, by_pid, make_process, make_system

from sysmon.app import HeaderStats, ProcessTable, SysmonApp, format_kb
from sysmon.counters import PAGE_SIZE_KB
from sysmon.monitor import Frame
from sysmon.ranking import SortMetric


def _source() -> ScriptedSource:
    first = by_pid([make_process(pid=1, own=50, rss=10), make_process(pid=2, own=10, rss=900)])
    second = by_pid([make_process(pid=1, own=70, rss=10), make_process(pid=2, own=15, rss=900)])
    return ScriptedSource([(make_system(1000), first), (make_system(1100), second)])


def _app(**kwargs) -> SysmonApp:
    return SysmonApp(source=_source(), refresh_interval=kwargs.pop("refresh_interval", 60), **kwargs)


async def _wait_for_frame(pilot, app: SysmonApp, predicate=lambda frame: True) -> Frame:
    for _ in range(40):
        await pilot.pause(0.1)
        if app.frame is not None and predicate(app.frame):
            return app.frame
    raise AssertionError("no matching frame rendered")


def test_format_kb_kilobytes():
    """Test format_kb with kilobyte values."""
    assert "K" in format_kb(500)


def test_format_kb_megabytes():
    """Test format_kb with megabyte values."""
    assert "M" in format_kb(5 * 1024)


def test_format_kb_gigabytes():
    """Test format_kb with gigabyte values."""
    assert "G" in format_kb(3 * 1024 * 1024)


@pytest.mark.asyncio
async def test_app_creation():
    """Test SysmonApp can be instantiated."""
    app = _app()
    assert app.title == "sysmon"
    assert app.sub_title == "Process Activity Sampler"
    assert app.frame is None


@pytest.mark.asyncio
async def test_app_compose():
    """Test SysmonApp composes correctly."""
    app = _app()
    async with app.run_test() as pilot:
        assert pilot.app.query_one("#header-stats") is not None
        assert pilot.app.query_one("#process-table") is not None
        assert pilot.app.query_one("#status") is not None


@pytest.mark.asyncio
async def test_app_renders_first_frame():
    """The first frame arrives from the monitor thread with 0% CPU everywhere."""
    app = _app()
    async with app.run_test() as pilot:
        frame = await _wait_for_frame(pilot, app)

        assert all(p.cpu_percent == 0.0 for p in frame.processes)
        assert pilot.app.query_one(ProcessTable).pids == [1, 2]
        header = pilot.app.query_one("#header-stats", HeaderStats)
        assert "CPUs: 4" in header.render_stats()


@pytest.mark.asyncio
async def test_app_sort_binding():
    """Test that 's' toggles the sort metric."""
    app = _app()
    async with app.run_test() as pilot:
        await _wait_for_frame(pilot, app)

        await pilot.press("s")
        frame = await _wait_for_frame(pilot, app, lambda f: f.sort_metric is SortMetric.MEM)

        assert [p.pid for p in frame.processes] == [2, 1]
        assert pilot.app.query_one(ProcessTable).pids == [2, 1]


@pytest.mark.asyncio
async def test_app_scroll_binding():
    """Test that down/up move the highlighted row."""
    app = _app()
    async with app.run_test() as pilot:
        await _wait_for_frame(pilot, app)

        await pilot.press("down")
        frame = await _wait_for_frame(pilot, app, lambda f: f.offset == 1)
        assert frame.selected.pid == 2

        await pilot.press("up")
        await _wait_for_frame(pilot, app, lambda f: f.offset == 0)


@pytest.mark.asyncio
async def test_app_refresh_binding():
    """Test that '+' lengthens the refresh interval."""
    app = _app(refresh_interval=5)
    async with app.run_test() as pilot:
        await _wait_for_frame(pilot, app)

        await pilot.press("plus")
        frame = await _wait_for_frame(pilot, app, lambda f: f.refresh_interval == 6)
        assert frame.refresh_interval == 6


@pytest.mark.asyncio
async def test_app_refresh_binding_repeated_presses():
    """Two quick '+' presses both count, even before a new frame is rendered."""
    app = _app(refresh_interval=5)
    async with app.run_test() as pilot:
        await _wait_for_frame(pilot, app)

        await pilot.press("plus", "plus")
        frame = await _wait_for_frame(pilot, app, lambda f: f.refresh_interval == 7)
        assert app._monitor.refresh_interval == 7
        assert frame.refresh_interval == 7


@pytest.mark.asyncio
async def test_app_rss_column_in_kilobytes():
    """The RSS column is labelled and rendered in kilobytes."""
    app = _app()
    async with app.run_test() as pilot:
        await _wait_for_frame(pilot, app)

        table = pilot.app.query_one("#process-table")
        assert str(table.columns["rss"].label) == "RSS(KB)"
        # pid 2 holds 900 pages of the host page size
        row = table.get_row("2")
        assert row[3] == str(make_process(pid=2, rss=900).resident_kb(PAGE_SIZE_KB))


@pytest.mark.asyncio
async def test_app_quit_binding():
    """Test that 'q' binding triggers quit."""
    app = _app()
    async with app.run_test() as pilot:
        await pilot.press("q")
        assert pilot.app._exit
    assert not app._monitor.is_running


@pytest.mark.asyncio
async def test_app_with_live_system():
    """Test that the app receives frames from the real system."""
    app = SysmonApp(refresh_interval=1)
    async with app.run_test() as pilot:
        frame = await _wait_for_frame(pilot, app)
        assert len(frame.processes) > 0
        assert len(pilot.app.query_one(ProcessTable).pids) == len(frame.processes)
