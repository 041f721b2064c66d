"""
Instructor-facing roster monitor.

Builds the aggregate class view from the session store on a periodic
polling tick, and is the entry point for administrative unlocks.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

import config
from core.engine import SessionEngine
from storage.session_store import SessionStore
from tracking.analytics import STATUS_CRITICAL, compute_statistics

logger = logging.getLogger(__name__)


class RosterMonitor:
    """
    Polls the session store and reports roster snapshots.

    Live engines running in the same process can be attached so an unlock
    reaches them directly and each tick lets them pick up resets made by
    other processes.
    """

    def __init__(self, store: SessionStore, poll_interval: float = config.ROSTER_POLL_INTERVAL):
        """
        Args:
            store: Shared session store.
            poll_interval: Seconds between polling ticks.
        """
        self.store = store
        self.poll_interval = poll_interval
        self.engines: Dict[str, SessionEngine] = {}
        self.should_stop: threading.Event = threading.Event()
        self.poll_thread: Optional[threading.Thread] = None

        # ---- Callbacks ----
        self.on_update: Optional[Callable[[Dict[str, Any]], None]] = None

    # ------------------------------------------------------------------
    # Engines
    # ------------------------------------------------------------------

    def attach_engine(self, engine: SessionEngine) -> None:
        """Register a live engine for direct unlocks and store refreshes."""
        self.engines[engine.session_id] = engine

    def detach_engine(self, session_id: str) -> None:
        """Forget a live engine (no-op if unknown)."""
        self.engines.pop(session_id, None)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        """
        Build the roster view.

        Returns:
            {"rows": [...], "kpis": {...}}. Rows are sorted lowest trust
            score first (ties by session id) so critical learners lead.
        """
        rows = [compute_statistics(session) for session in self.store.list_sessions()]
        rows.sort(key=lambda row: (row["trust_score"], row["session_id"]))

        kpis = {
            "total_sessions": len(rows),
            "total_violations": sum(row["violation_count"] for row in rows),
            "critical_count": sum(1 for row in rows if row["status"] == STATUS_CRITICAL),
        }
        return {"rows": rows, "kpis": kpis}

    def violation_history(self, session_id: str) -> List[Dict[str, Any]]:
        """
        Full violation log for one session, most recent first.

        Raises:
            InvalidSessionError: If the session does not exist.
        """
        session = self.store.load(session_id)
        return [v.to_dict() for v in reversed(session.violation_log)]

    # ------------------------------------------------------------------
    # Administrative unlock
    # ------------------------------------------------------------------

    def unlock(self, session_id: str) -> None:
        """
        Reset a learner's score to 100 and clear their log.

        Routed through the live engine when attached so its phase leaves
        LOCKED_OUT immediately; otherwise applied to the store.

        Raises:
            InvalidSessionError: If the session does not exist.
        """
        engine = self.engines.get(session_id)
        if engine is not None:
            engine.reset_session(session_id)
        else:
            self.store.reset(session_id)
        logger.info(f"Session {session_id} unlocked")

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def poll_once(self) -> Dict[str, Any]:
        """Run one polling tick: refresh engines, then publish a snapshot."""
        for engine in list(self.engines.values()):
            try:
                engine.refresh_from_store()
            except Exception as e:
                logger.error(f"Refreshing engine {engine.session_id} failed: {e}")

        view = self.snapshot()
        if self.on_update:
            try:
                self.on_update(view)
            except Exception as e:
                logger.debug(f"on_update callback error: {e}")
        return view

    def start(self) -> None:
        """Start the background polling thread (no-op if running)."""
        if self.poll_thread is not None and self.poll_thread.is_alive():
            return
        self.should_stop.clear()
        self.poll_thread = threading.Thread(target=self._poll_loop, daemon=True)
        self.poll_thread.start()
        logger.info(f"Roster polling started (every {self.poll_interval}s)")

    def stop(self) -> None:
        """Stop the polling thread and wait briefly for it."""
        self.should_stop.set()
        if self.poll_thread is not None:
            self.poll_thread.join(timeout=max(1.0, self.poll_interval * 2))
            if self.poll_thread.is_alive():
                logger.warning("Roster poll thread did not stop within timeout")
            self.poll_thread = None

    def _poll_loop(self) -> None:
        while not self.should_stop.is_set():
            try:
                self.poll_once()
            except Exception as e:
                logger.error(f"Roster poll error: {e}")
            self.should_stop.wait(self.poll_interval)
