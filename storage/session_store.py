"""
JSON-file persistence for session records.

The engine treats this as a collaborator: it loads a Session at start-up
and calls save() after every mutation. Each record carries an integrity
hash to catch casual hand-editing of trust scores; a record that fails the
check is loaded with a zero score so the learner is locked out until a
instructor unlocks them.
"""

import hashlib
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import config
from core.errors import InvalidSessionError, PersistenceError
from tracking.session import Session

logger = logging.getLogger(__name__)

# Salt for integrity hash
_INTEGRITY_SALT = b"SessionIntegrity_v1_" + b"\x5e\x21\xc3\x0a"


class SessionStore:
    """
    Stores session records in a single JSON file keyed by session id.

    The file is re-read on every operation so several processes (the
    learner engine and the monitoring view) can share it. Writes are
    atomic (temp file + rename).
    """

    def __init__(self, data_file: Optional[Path] = None):
        """
        Args:
            data_file: Path of the JSON file. Defaults to config.SESSIONS_FILE.
        """
        self.data_file: Path = Path(data_file) if data_file else config.SESSIONS_FILE
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def create(self, session_id: str, display_name: str = "") -> Session:
        """
        Register a new session, or return the existing one with that id.

        Args:
            session_id: Opaque session id.
            display_name: Learner name shown on the roster.

        Raises:
            PersistenceError: If the record cannot be written.
        """
        with self._lock:
            records = self._read_records()
            if session_id in records:
                logger.info(f"Session {session_id} already exists")
                return self._decode(session_id, records[session_id])

            session = Session(session_id=session_id, display_name=display_name)
            records[session_id] = self._encode(session)
            self._write_records(records)

        logger.info(f"Created session {session_id}")
        return session

    def exists(self, session_id: str) -> bool:
        """True if a record exists for session_id."""
        with self._lock:
            return session_id in self._read_records()

    def load(self, session_id: str) -> Session:
        """
        Load a session record.

        Raises:
            InvalidSessionError: If no record exists.
        """
        with self._lock:
            records = self._read_records()
        if session_id not in records:
            raise InvalidSessionError(session_id)
        return self._decode(session_id, records[session_id])

    def save(self, session: Session) -> bool:
        """
        Persist a session record.

        A write carrying an older reset_epoch than the stored record is
        refused: an administrative reset always wins over a stale copy.

        Args:
            session: The record to write.

        Returns:
            True if written, False if refused or the write failed.
        """
        with self._lock:
            records = self._read_records()
            stored = records.get(session.session_id)
            if stored is None:
                logger.warning(f"Refusing to save unknown session {session.session_id}")
                return False

            stored_epoch = int(stored.get("reset_epoch", 0))
            if stored_epoch > session.reset_epoch:
                logger.warning(
                    f"Stale write for {session.session_id} refused "
                    f"(epoch {session.reset_epoch} < stored {stored_epoch})"
                )
                return False

            records[session.session_id] = self._encode(session)
            try:
                self._write_records(records)
            except PersistenceError as e:
                logger.error(f"Failed to save session {session.session_id}: {e}")
                return False

        logger.debug(f"Saved session {session.session_id} (score {session.trust_score})")
        return True

    def reset(self, session_id: str) -> Session:
        """
        Administrative reset: score back to 100, log cleared, epoch bumped.

        Raises:
            InvalidSessionError: If no record exists.
            PersistenceError: If the record cannot be written.
        """
        with self._lock:
            records = self._read_records()
            if session_id not in records:
                raise InvalidSessionError(session_id)

            session = self._decode(session_id, records[session_id])
            session.trust_score = config.INITIAL_TRUST_SCORE
            session.violation_log = []
            session.reset_epoch += 1
            records[session_id] = self._encode(session)
            self._write_records(records)

        logger.info(f"Session {session_id} reset by administrator (epoch {session.reset_epoch})")
        return session

    def list_sessions(self) -> List[Session]:
        """All stored sessions, in id order."""
        with self._lock:
            records = self._read_records()
        return [self._decode(sid, records[sid]) for sid in sorted(records)]

    # ------------------------------------------------------------------
    # Encoding and integrity
    # ------------------------------------------------------------------

    def _compute_integrity_hash(self, record: Dict[str, Any]) -> str:
        """
        Compute integrity hash for a record (without its _integrity field).

        Returns:
            Hex string of the integrity hash.
        """
        canonical = json.dumps({
            "session_id": record.get("session_id"),
            "trust_score": record.get("trust_score"),
            "violation_log": record.get("violation_log", []),
            "reset_epoch": record.get("reset_epoch", 0),
        }, sort_keys=True)
        return hashlib.sha256(_INTEGRITY_SALT + canonical.encode('utf-8')).hexdigest()[:16]

    def _encode(self, session: Session) -> Dict[str, Any]:
        record = session.to_dict()
        record["_integrity"] = self._compute_integrity_hash(record)
        return record

    def _decode(self, session_id: str, record: Dict[str, Any]) -> Session:
        """
        Build a Session from a stored record, applying the tamper policy.

        Records without a hash (hand-created or older files) are trusted.
        """
        tampered = False
        stored_hash = record.get("_integrity")
        if stored_hash and stored_hash != self._compute_integrity_hash(record):
            logger.warning(f"Integrity check failed for session {session_id} - possible tampering")
            tampered = True

        try:
            session = Session.from_dict({**record, "session_id": session_id})
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Malformed record for session {session_id}: {e}")
            session = Session(
                session_id=session_id,
                display_name=str(record.get("display_name", "")),
                reset_epoch=int(record.get("reset_epoch", 0) or 0),
            )
            tampered = True

        if tampered:
            session.trust_score = 0
        return session

    # ------------------------------------------------------------------
    # File I/O (caller holds self._lock)
    # ------------------------------------------------------------------

    def _read_records(self) -> Dict[str, Dict[str, Any]]:
        if not self.data_file.exists():
            return {}
        try:
            with open(self.data_file, 'r') as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError, OSError) as e:
            logger.error(f"Failed to read session store {self.data_file}: {e}")
            return {}

        sessions = data.get("sessions", {}) if isinstance(data, dict) else {}
        if not isinstance(sessions, dict):
            logger.error(f"Session store {self.data_file} has no sessions mapping")
            return {}
        return sessions

    def _write_records(self, records: Dict[str, Dict[str, Any]]) -> None:
        """
        Atomically write all records (temp file, then rename).

        Raises:
            PersistenceError: If the file cannot be written.
        """
        try:
            self.data_file.parent.mkdir(parents=True, exist_ok=True)
            temp_fd, temp_path = tempfile.mkstemp(
                suffix='.tmp',
                prefix='sessions_',
                dir=self.data_file.parent
            )
            try:
                with os.fdopen(temp_fd, 'w') as f:
                    json.dump({"sessions": records}, f, indent=2)
                os.replace(temp_path, self.data_file)
            except Exception:
                # Clean up temp file on error
                try:
                    os.unlink(temp_path)
                except OSError:
                    pass
                raise
        except (IOError, OSError) as e:
            raise PersistenceError(f"Could not write {self.data_file}: {e}") from e
