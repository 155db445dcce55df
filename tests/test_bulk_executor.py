import threading

import pytest
from unittest.mock import MagicMock
from docker.errors import DockerException, NotFound

from bulk_executor import BulkLifecycleExecutor, run_bulk_action
from config import STOP_TIMEOUT
from utils import RequestCancelled


@pytest.fixture
def gateway():
    return MagicMock()


class TestBulkLifecycleExecutor:
    """One action over many targets, failures isolated per target"""

    @pytest.mark.parametrize("n,k", [(9, 3), (10, 3), (4, 1), (5, 10)])
    def test_every_kth_failure_is_counted(self, gateway, n, k):
        calls = {"count": 0}

        def stop(container_id, timeout=None):
            calls["count"] += 1
            if calls["count"] % k == 0:
                raise DockerException(f"cannot stop {container_id}")

        gateway.stop_container.side_effect = stop
        targets = [f"c{i}" for i in range(n)]

        report = BulkLifecycleExecutor(gateway).apply("stop", targets)
        summary = report.to_dict()["summary"]

        assert summary["errors"] == n // k
        assert summary["success"] + summary["errors"] == n
        assert summary["total"] == n
        assert set(report.to_dict()["results"]) == set(targets)

    def test_missing_target_does_not_abort_batch(self, gateway):
        def stop(container_id, timeout=None):
            if container_id == "b":
                raise NotFound("No such container: b")

        gateway.stop_container.side_effect = stop

        body = BulkLifecycleExecutor(gateway).apply("stop", ["a", "b", "c"]).to_dict()

        assert body["summary"] == {"total": 3, "success": 2, "errors": 1}
        assert body["results"]["a"] == {"status": "success"}
        assert body["results"]["b"]["status"] == "error"
        assert "No such container: b" in body["results"]["b"]["message"]
        assert gateway.stop_container.call_count == 3

    def test_stop_and_restart_use_configured_timeout(self, gateway):
        executor = BulkLifecycleExecutor(gateway, stop_timeout=5)
        executor.apply("stop", ["a"])
        executor.apply("restart", ["a"])

        gateway.stop_container.assert_called_once_with("a", timeout=5)
        gateway.restart_container.assert_called_once_with("a", timeout=5)

    def test_remove_is_forced(self, gateway):
        BulkLifecycleExecutor(gateway).apply("remove", ["a"])
        gateway.remove_container.assert_called_once_with("a", force=True)

    def test_start(self, gateway):
        report = BulkLifecycleExecutor(gateway).apply("start", ["a", "b"])
        assert report.success_count == 2
        assert gateway.start_container.call_count == 2

    def test_unknown_action_fails_every_target(self, gateway):
        body = BulkLifecycleExecutor(gateway).apply("pause", ["a", "b"]).to_dict()

        assert body["action"] == "pause"
        assert body["summary"] == {"total": 2, "success": 0, "errors": 2}
        assert body["results"]["a"] == {"status": "error", "message": "unknown action: pause"}
        assert gateway.method_calls == []

    def test_empty_target_list(self, gateway):
        body = BulkLifecycleExecutor(gateway).apply("stop", []).to_dict()
        assert body["summary"] == {"total": 0, "success": 0, "errors": 0}
        assert body["results"] == {}

    def test_cancelled_before_start_touches_nothing(self, gateway):
        event = threading.Event()
        event.set()

        with pytest.raises(RequestCancelled):
            BulkLifecycleExecutor(gateway, cancel_event=event).apply("stop", ["a", "b"])
        gateway.stop_container.assert_not_called()

    def test_cancellation_stops_remaining_targets(self, gateway):
        event = threading.Event()

        def stop(container_id, timeout=None):
            event.set()

        gateway.stop_container.side_effect = stop

        with pytest.raises(RequestCancelled):
            BulkLifecycleExecutor(gateway, cancel_event=event).apply("stop", ["a", "b", "c"])
        gateway.stop_container.assert_called_once_with("a", timeout=STOP_TIMEOUT)


def test_run_bulk_action_opens_a_session(docker_client):
    report = run_bulk_action("restart", ["a"])

    assert report.success_count == 1
    docker_client.ping.assert_called_once()
    docker_client.api.restart.assert_called_once_with("a", timeout=STOP_TIMEOUT)
    docker_client.close.assert_called_once()
