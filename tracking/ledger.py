"""
Trust score ledger.

The single writer for a session's trust score and violation log. Every
mutation happens under one lock, so a reader calling snapshot() never sees
a log entry without its deduction (or a restored score with stale log).
"""

import dataclasses
import logging
import threading
from typing import Callable, List, Optional, Tuple

import config
from tracking.session import Session, Violation

logger = logging.getLogger(__name__)


class TrustScoreLedger:
    """
    Applies penalties to a Session and exposes read-only views of it.

    The penalty listener (normally SessionEngine) is called synchronously
    after each penalty so a lockout takes effect before the next signal.
    """

    def __init__(self, session: Session):
        """
        Args:
            session: The session record this ledger exclusively owns.
        """
        self.session = session
        self._lock = threading.RLock()
        self.on_penalty: Optional[Callable[[int, Violation], None]] = None

    @property
    def trust_score(self) -> int:
        """Current trust score."""
        with self._lock:
            return self.session.trust_score

    @property
    def violation_count(self) -> int:
        """Number of violations since the last reset."""
        with self._lock:
            return len(self.session.violation_log)

    @property
    def reset_epoch(self) -> int:
        """Number of administrative resets applied to the session."""
        with self._lock:
            return self.session.reset_epoch

    def apply_penalty(self, violation: Violation) -> int:
        """
        Record a violation and deduct its penalty, clamping at zero.

        Args:
            violation: The classified violation.

        Returns:
            The trust score after the deduction.
        """
        with self._lock:
            log = self.session.violation_log
            # Keep the log chronological even if the clock stepped backwards
            if log and violation.timestamp < log[-1].timestamp:
                violation = dataclasses.replace(violation, timestamp=log[-1].timestamp)

            log.append(violation)
            self.session.trust_score = max(0, self.session.trust_score - violation.deduction)
            new_score = self.session.trust_score

        logger.info(
            f"Violation {violation.kind.value} on {self.session.session_id}: "
            f"-{violation.deduction} pts, score now {new_score}"
        )

        if self.on_penalty:
            self.on_penalty(new_score, violation)

        return new_score

    def reset(self) -> None:
        """Restore the score to 100 and clear the log in one step."""
        with self._lock:
            self.session.trust_score = config.INITIAL_TRUST_SCORE
            self.session.violation_log = []
            self.session.reset_epoch += 1
            epoch = self.session.reset_epoch
        logger.info(f"Ledger reset for {self.session.session_id} (epoch {epoch})")

    def adopt_reset(self, epoch: int) -> None:
        """
        Apply a reset performed elsewhere (e.g. by another process).

        Args:
            epoch: The reset epoch recorded by the store.
        """
        with self._lock:
            self.session.trust_score = config.INITIAL_TRUST_SCORE
            self.session.violation_log = []
            self.session.reset_epoch = epoch
        logger.info(f"Adopted external reset for {self.session.session_id} (epoch {epoch})")

    def recent_violations(self, n: int = config.RECENT_VIOLATIONS_LIMIT) -> List[Violation]:
        """
        Get the last n violations, most recent first.

        Args:
            n: Maximum number of entries.
        """
        if n <= 0:
            return []
        with self._lock:
            return list(reversed(self.session.violation_log[-n:]))

    def snapshot(self) -> Tuple[int, Tuple[Violation, ...]]:
        """Score and full log read together."""
        with self._lock:
            return self.session.trust_score, tuple(self.session.violation_log)

    def copy_session(self) -> Session:
        """Consistent copy of the session record (for persistence)."""
        with self._lock:
            return dataclasses.replace(self.session, violation_log=list(self.session.violation_log))
