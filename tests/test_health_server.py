import logging
import unittest
from datetime import datetime, timezone, timedelta
from unittest.mock import MagicMock, patch
from seldon_ingress.main import Controller
from seldon_ingress.seldon.config import IngressDefaults
from seldon_ingress.utils.health_server import ControllerState
from seldon_ingress.utils.log import ContextLoggerAdapter, SafeFormatter


class TestReadiness(unittest.TestCase):
    def setUp(self):
        self.now = datetime.now(timezone.utc)
        self.state = ControllerState(lease_duration_seconds=60, reconcile_interval_seconds=30)
        self.state.update(healthy=True, bootstrapped=True, lease_loop_last_tick=self.now)

    def test_follower_ready(self):
        self.assertEqual(self.state.readiness(self.now), (True, "ok"))

    def test_unhealthy(self):
        self.state.update(healthy=False)
        self.assertEqual(self.state.readiness(self.now), (False, "unhealthy"))

    def test_not_bootstrapped(self):
        self.state.update(bootstrapped=False)
        self.assertEqual(self.state.readiness(self.now), (False, "not-bootstrapped"))

    def test_stalled_election_loop(self):
        self.state.update(lease_loop_last_tick=self.now - timedelta(seconds=121))
        self.assertEqual(self.state.readiness(self.now), (False, "election-loop-stalled>120s"))

    def test_new_leader_has_grace_period(self):
        self.state.update(leader=True)
        self.assertEqual(self.state.readiness(self.now), (True, "ok"))

    def test_leader_with_recent_pass(self):
        self.state.update(leader=True, last_reconcile_ok=self.now - timedelta(seconds=10))
        self.assertTrue(self.state.readiness(self.now)[0])

    def test_leader_with_stale_pass(self):
        self.state.update(leader=True, last_reconcile_ok=self.now - timedelta(seconds=91))
        self.assertEqual(self.state.readiness(self.now), (False, "reconcile-stalled>90s"))

    def test_leader_with_failed_pass(self):
        self.state.update(leader=True, last_reconcile_ok=self.now, last_pass_failed=True)
        self.assertEqual(self.state.readiness(self.now), (False, "last-reconcile-pass-failed"))

    def test_unknown_field_rejected(self):
        with self.assertRaises(AttributeError):
            self.state.update(readyy=True)


class TestControllerLoop(unittest.TestCase):
    def setUp(self):
        self.state = ControllerState(lease_duration_seconds=60, reconcile_interval_seconds=30)
        self.state.update(healthy=True)
        self.elector = MagicMock()
        self.controller = Controller(
            MagicMock(), self.elector, MagicMock(), MagicMock(), IngressDefaults(enabled=True),
            "pod-a", state=self.state,
        )

    def test_lease_tick_records_leadership(self):
        self.elector.try_acquire_or_renew.return_value = True
        self.controller.lease_tick()
        snapshot = self.state.snapshot()
        self.assertTrue(snapshot["leader"])
        self.assertTrue(snapshot["bootstrapped"])
        self.assertIsNotNone(snapshot["lease_loop_last_tick"])
        self.assertIsNotNone(snapshot["leader_since"])

    def test_lease_error_drops_leadership(self):
        self.state.update(leader=True)
        self.elector.try_acquire_or_renew.side_effect = RuntimeError("api down")
        self.controller.lease_tick()
        self.assertFalse(self.state.snapshot()["leader"])

    def test_successful_pass_marks_ready(self):
        self.elector.try_acquire_or_renew.return_value = True
        self.controller.lease_tick()
        with patch("seldon_ingress.main.reconcile_all") as reconcile_all:
            self.controller.run_once()
        reconcile_all.assert_called_once()
        self.assertIsNotNone(self.state.snapshot()["last_reconcile_ok"])
        self.assertTrue(self.state.ready)

    def test_failed_pass_marks_not_ready(self):
        self.elector.try_acquire_or_renew.return_value = True
        self.controller.lease_tick()
        with patch("seldon_ingress.main.reconcile_all", side_effect=RuntimeError("list failed")):
            self.controller.run_once()
        self.assertEqual(self.state.readiness(datetime.now(timezone.utc)), (False, "last-reconcile-pass-failed"))

    def test_follower_skips_pass(self):
        self.controller.last_reconcile_time["ns1/dep1"] = 100
        with patch("seldon_ingress.main.reconcile_all") as reconcile_all:
            self.controller.run_once()
        reconcile_all.assert_not_called()
        self.assertEqual(self.controller.last_reconcile_time, {})


class TestLogging(unittest.TestCase):
    def test_context_and_missing_keys(self):
        record = logging.LogRecord("seldon-ingress-controller", logging.INFO, __file__, 1, "hello", None, None)
        formatter = SafeFormatter('msg="%(message)s" sdep=%(sdep)s ingress=%(ingress)s')
        self.assertEqual(formatter.format(record), 'msg="hello" sdep= ingress=')

        adapter = ContextLoggerAdapter(logging.getLogger("seldon-ingress-controller"), "pod-a")
        adapter.set_context(sdep="dep1")
        _, kwargs = adapter.process("hello", {"extra": {"ingress": "dep1-grpc"}})
        self.assertEqual(kwargs["extra"]["sdep"], "dep1")
        self.assertEqual(kwargs["extra"]["ingress"], "dep1-grpc")
        self.assertEqual(kwargs["extra"]["leader"], "pod-a")


if __name__ == '__main__':
    unittest.main()
