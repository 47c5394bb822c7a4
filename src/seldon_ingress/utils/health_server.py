from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from datetime import datetime, timezone, timedelta
import threading

PASS_LOOP_SECONDS = 5


def _now(): return datetime.now(timezone.utc)


class ControllerState:
    """Liveness and readiness inputs shared by the lease loop, the pass loop and the health endpoints."""

    def __init__(self, lease_duration_seconds=15, reconcile_interval_seconds=30):
        self._lock = threading.Lock()
        self.healthy = False
        self.leader = False
        self.bootstrapped = False
        self.last_pass_failed = False
        self.lease_loop_last_tick = None
        self.last_reconcile_ok = None
        self.lease_duration_seconds = lease_duration_seconds
        self.reconcile_interval_seconds = reconcile_interval_seconds
        self.leader_since = None

    def update(self, **kwargs):
        with self._lock:
            if kwargs.get("leader") and not self.leader:
                self.leader_since = _now()
            for key, value in kwargs.items():
                if not hasattr(self, key) or key.startswith("_"):
                    raise AttributeError(f"unknown controller state field {key}")
                setattr(self, key, value)

    def snapshot(self):
        with self._lock:
            return {k: v for k, v in vars(self).items() if not k.startswith("_")}

    @property
    def ready(self):
        return self.readiness(_now())[0]

    def readiness(self, now: datetime):
        s = self.snapshot()
        if not s["healthy"]: return False, "unhealthy"
        if not s["bootstrapped"]: return False, "not-bootstrapped"
        if not isinstance(s["lease_loop_last_tick"], datetime): return False, "election-loop-no-heartbeat"

        election_threshold = max(5, s["lease_duration_seconds"] or 15) * 2
        if (now - s["lease_loop_last_tick"]) > timedelta(seconds=election_threshold):
            return False, f"election-loop-stalled>{election_threshold}s"

        if not s["leader"]:
            return True, "ok"
        if s["last_pass_failed"]:
            return False, "last-reconcile-pass-failed"

        # a leader has to finish a pass within a few loop ticks of taking the lease
        pass_threshold = max(PASS_LOOP_SECONDS, s["reconcile_interval_seconds"] or 0) * 3
        last_ok = s["last_reconcile_ok"] or s["leader_since"]
        if last_ok is None:
            return False, "reconcile-pending"
        if (now - last_ok) > timedelta(seconds=pass_threshold):
            return False, f"reconcile-stalled>{pass_threshold}s"
        return True, "ok"


controller_state = ControllerState()


def _make_handler(state):
    class _Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            if self.path == "/healthz":
                snapshot = state.snapshot()
                self._reply(200, "ok") if snapshot["healthy"] else self._reply(503, "unhealthy")
                return
            if self.path == "/readyz":
                ready, reason = state.readiness(_now())
                self._reply(200, "ready") if ready else self._reply(503, f"not-ready: {reason}")
                return
            self.send_error(404, "not found")

        def _reply(self, code, msg):
            self.send_response(code)
            self.send_header("Content-Type", "text/plain; charset=utf-8")
            self.send_header("Cache-Control", "no-store")
            self.end_headers()
            self.wfile.write(msg.encode())

        def log_message(self, *args): return

    return _Handler


def start_health_server(port: int = 8080, logger=None, state=None):
    srv = ThreadingHTTPServer(("0.0.0.0", port), _make_handler(state or controller_state))
    t = threading.Thread(target=srv.serve_forever, name="health-server", daemon=True)
    t.start()
    if logger:
        logger.info(f"Health server listening on :{port}")
    return srv
