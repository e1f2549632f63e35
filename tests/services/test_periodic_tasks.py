"""Tests for PeriodicTask and BackgroundTasks."""

import threading

import pytest

from procurement_services.scheduler import BackgroundTasks, PeriodicTask


class TestPeriodicTask:
    def test_tick_runs_action(self):
        task = PeriodicTask("sweep", 60, lambda: "done")

        assert task.tick() == "done"
        assert task.ticks == 1
        assert task.failures == 0

    def test_failing_tick_is_counted_not_raised(self, captured_logs):
        def boom():
            raise RuntimeError("db down")

        task = PeriodicTask("sweep", 60, boom)

        assert task.tick() is None
        assert task.failures == 1
        failed = [r for r in captured_logs() if r["message"] == "periodic_task_failed"]
        assert failed[0]["task"] == "sweep"

    def test_thread_runs_until_stopped(self):
        ran = threading.Event()
        task = PeriodicTask("sweep", 0.01, ran.set)

        task.start()
        task.start()
        try:
            assert ran.wait(timeout=5)
            assert task.is_running
        finally:
            task.stop(timeout=5)

        assert not task.is_running

    def test_stop_before_start(self):
        task = PeriodicTask("sweep", 60, lambda: None)
        task.stop()
        assert not task.is_running


class TestBackgroundTasks:
    def test_duplicate_names_rejected(self):
        tasks = BackgroundTasks([PeriodicTask("a", 1, lambda: None)])

        with pytest.raises(ValueError):
            tasks.add(PeriodicTask("a", 1, lambda: None))

    def test_tick_all(self):
        tasks = BackgroundTasks([
            PeriodicTask("a", 1, lambda: 1),
            PeriodicTask("b", 1, lambda: 2),
        ])

        assert tasks.names == ("a", "b")
        assert tasks.tick_all() == {"a": 1, "b": 2}
        assert tasks.get("a").ticks == 1

    def test_orchestrator_tasks(self, orchestrator):
        assert orchestrator.background.names == (
            "escalations",
            "integration_retry",
            "reconciliation",
            "debounce_flush",
            "notification_retry",
        )

    def test_orchestrator_start_stop(self, orchestrator):
        orchestrator.start()
        assert orchestrator.is_running

        orchestrator.stop(timeout=5)
        assert not orchestrator.is_running
