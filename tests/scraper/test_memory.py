"""Unit tests for the memory governor state machine and restart scheduling."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import psutil
import pytest

from eol_scraper.scraper.memory import GovernorState, MemoryGovernor

_MB = 1024 * 1024


def _set_rss(process: MagicMock, rss_mb: int) -> None:
    process.memory_info.return_value = SimpleNamespace(rss=rss_mb * _MB, vms=900 * _MB)


def _governor(process: MagicMock, **kwargs) -> MemoryGovernor:
    kwargs.setdefault("exit_func", MagicMock())
    kwargs.setdefault("sleep", AsyncMock())
    return MemoryGovernor(limit_mb=450, warning_mb=380, process=process, **kwargs)


class TestMeasurement:
    def test_usage_reports_megabytes(self, process_factory) -> None:
        governor = _governor(process_factory(rss_mb=200, uss_mb=150, vms_mb=1000))
        sample = governor.usage("probe")
        assert (sample.rss_mb, sample.heap_used_mb, sample.heap_total_mb) == (200, 150, 1000)
        assert governor.history == []

    def test_uss_falls_back_to_rss_when_denied(self, process_factory) -> None:
        process = process_factory(rss_mb=210)
        process.memory_full_info.side_effect = psutil.AccessDenied()
        assert _governor(process).usage().heap_used_mb == 210

    def test_history_is_bounded(self, fake_process) -> None:
        governor = _governor(fake_process, history_size=3)
        for n in range(5):
            governor.sample(f"s{n}")
        assert [s.stage for s in governor.history] == ["s2", "s3", "s4"]

    def test_sample_to_dict_shape(self, fake_process) -> None:
        governor = _governor(fake_process)
        governor.increment_request_count()
        data = governor.sample("request_start_1").to_dict()
        assert data["stage"] == "request_start_1"
        assert data["requestCount"] == 1
        assert {"rss", "heapUsed", "heapTotal", "timestamp"} <= data.keys()


class TestStateMachine:
    def test_normal_to_warning_and_back(self, process_factory) -> None:
        process = process_factory(rss_mb=390)
        governor = _governor(process)
        governor.sample("a")
        assert governor.state is GovernorState.WARNING
        assert governor.accepting_requests is True

        _set_rss(process, 200)
        governor.sample("b")
        assert governor.state is GovernorState.NORMAL

    def test_should_restart_at_limit(self, process_factory) -> None:
        process = process_factory(rss_mb=449)
        governor = _governor(process)
        assert governor.should_restart() is False
        _set_rss(process, 450)
        assert governor.should_restart() is True
        assert governor.is_over_limit() is True

    def test_force_gc_returns_collected(self, fake_process) -> None:
        assert _governor(fake_process).force_gc() >= 0

    def test_snapshot_shape(self, process_factory) -> None:
        snapshot = _governor(process_factory(rss_mb=225, uss_mb=180)).snapshot()
        assert snapshot == {
            "rss": 225,
            "heapUsed": 180,
            "heapTotal": 900,
            "limit": 450,
            "warning": 380,
            "percentUsed": 50,
        }


@pytest.mark.asyncio
class TestRestart:
    async def test_over_limit_restarts_and_exits(self, process_factory) -> None:
        exit_func = MagicMock()
        sleep = AsyncMock()
        governor = _governor(
            process_factory(rss_mb=500), exit_func=exit_func, sleep=sleep, restart_delay=2.0
        )

        assert governor.schedule_restart_if_needed() is True
        assert governor.state is GovernorState.RESTARTING
        assert governor.accepting_requests is False
        assert governor.is_shutting_down is True

        await governor.wait_for_restart()

        sleep.assert_awaited_once_with(2.0)
        exit_func.assert_called_once_with()
        assert governor.state is GovernorState.TERMINATED

    async def test_under_limit_does_nothing(self, fake_process) -> None:
        exit_func = MagicMock()
        governor = _governor(fake_process, exit_func=exit_func)
        assert governor.schedule_restart_if_needed() is False
        await governor.wait_for_restart()
        exit_func.assert_not_called()
        assert governor.state is GovernorState.NORMAL

    async def test_begin_restart_is_idempotent(self, fake_process) -> None:
        exit_func = MagicMock()
        governor = _governor(fake_process, exit_func=exit_func)
        governor.begin_restart("keyence task failed")
        governor.begin_restart("again")
        await governor.wait_for_restart()
        exit_func.assert_called_once()

    async def test_waits_for_drain_when_configured(self, fake_process) -> None:
        drain = AsyncMock(return_value=True)
        governor = _governor(
            fake_process, wait_for_drain=True, drain=drain, drain_timeout=12.0
        )
        governor.begin_restart("memory limit reached")
        await governor.wait_for_restart()
        drain.assert_awaited_once_with(12.0)

    async def test_drain_skipped_by_default(self, fake_process) -> None:
        drain = AsyncMock()
        governor = _governor(fake_process, drain=drain)
        governor.begin_restart("memory limit reached")
        await governor.wait_for_restart()
        drain.assert_not_awaited()

    async def test_from_settings(self, settings, fake_process) -> None:
        governor = MemoryGovernor.from_settings(settings, process=fake_process)
        assert governor.limit_mb == settings.memory_limit_mb
        assert governor.warning_mb == settings.memory_warning_mb
        assert governor.wait_for_drain is False
