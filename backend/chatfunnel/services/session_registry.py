import logging
import time
from typing import Callable, Dict, Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from chatfunnel import config
from chatfunnel.engine.interpreter import FunnelInterpreter, RunState

logger = logging.getLogger(__name__)


class RunRegistry:
    """
    Process-local table of live chat runs.

    Clients address their run through a signed token carrying the run id, so
    a run id cannot be guessed or tampered with. Runs whose token has expired,
    and completed runs nobody has looked at for ``completed_retention``
    seconds, are evicted whenever a new run is registered.
    """

    def __init__(
        self,
        secret_key: str = config.SECRET_KEY,
        max_age: int = config.RUN_TOKEN_MAX_AGE,
        completed_retention: int = config.COMPLETED_RUN_RETENTION,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.serializer = URLSafeTimedSerializer(secret_key, salt="chat-run")
        self.max_age = max_age
        self.completed_retention = completed_retention
        self.timer = timer
        self.runs: Dict[str, FunnelInterpreter] = {}
        self.registered_at: Dict[str, float] = {}
        self.touched_at: Dict[str, float] = {}

    def register(self, run: FunnelInterpreter) -> str:
        self.prune()
        now = self.timer()
        self.runs[run.run_id] = run
        self.registered_at[run.run_id] = now
        self.touched_at[run.run_id] = now
        logger.info(f"[RUNS] Registered run {run.run_id} for funnel {run.funnel.id} ({len(self.runs)} live)")
        return self.serializer.dumps({"run_id": run.run_id})

    def resolve(self, token: str) -> Optional[FunnelInterpreter]:
        """Run addressed by the token, or None for a bad, expired or unknown token."""
        try:
            data = self.serializer.loads(token, max_age=self.max_age)
        except SignatureExpired:
            logger.warning("[RUNS] Expired run token received")
            return None
        except BadSignature:
            logger.warning("[RUNS] Invalid run token received")
            return None
        run_id = data.get("run_id")
        run = self.runs.get(run_id)
        if run is not None:
            self.touched_at[run_id] = self.timer()
        return run

    def prune(self) -> int:
        """Drop runs that can no longer be reached or are done. Returns how many went."""
        now = self.timer()
        stale = [
            run_id
            for run_id, run in self.runs.items()
            if now - self.registered_at[run_id] > self.max_age
            or (run.state == RunState.COMPLETED and now - self.touched_at[run_id] > self.completed_retention)
        ]
        for run_id in stale:
            self.discard(run_id)
        if stale:
            logger.info(f"[RUNS] Evicted {len(stale)} runs ({len(self.runs)} live)")
        return len(stale)

    def discard(self, run_id: str):
        self.registered_at.pop(run_id, None)
        self.touched_at.pop(run_id, None)
        if self.runs.pop(run_id, None) is not None:
            logger.info(f"[RUNS] Discarded run {run_id}")

    def clear(self):
        logger.info(f"[RUNS] Dropping {len(self.runs)} live runs")
        self.runs.clear()
        self.registered_at.clear()
        self.touched_at.clear()
