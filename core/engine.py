"""
SessionEngine: the session integrity state machine.

Consumes learner signals through a single dispatch() entry point,
classifies them, applies penalties through the TrustScoreLedger and drives
the session phase:

    NORMAL --focus lost / tab switch--> RECALIBRATING
    RECALIBRATING --focus returned + 3s countdown--> NORMAL
    NORMAL --window resized / screenshot--> MOMENTARY_BLACKOUT --1.5s--> NORMAL
    any --score below threshold--> LOCKED_OUT --administrative reset--> NORMAL

This module has ZERO UI dependencies. The host supplies a media controller
and an overlay renderer (see core.collaborators) and receives phase and
violation updates via callbacks.

Callbacks:
    on_phase_change(old: SessionPhase, new: SessionPhase)
    on_violation(violation: Violation, new_score: int)
"""

import logging
import threading
import time
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

import config
from core.collaborators import MediaControllerProtocol, OverlayRendererProtocol
from core.errors import InvalidSessionError, PersistenceError
from core.timers import TimerHandle, TimerScheduler
from playback.guard import PlaybackGuard
from signals.events import (
    BlockedAction,
    FocusLost,
    FocusReturned,
    KeyCombo,
    PlaybackSeekAttempt,
    PlaybackTimeUpdate,
    Signal,
    WindowResized,
)
from tracking.ledger import TrustScoreLedger
from tracking.session import SessionPhase, Violation, ViolationKind
from tracking.violations import ViolationClassifier

if TYPE_CHECKING:
    from storage.session_store import SessionStore

logger = logging.getLogger(__name__)


class SessionEngine:
    """
    Integrity engine for one learner session.

    Handles:
    - Signal classification and penalty application
    - Recalibration countdown and momentary blackout timers
    - Lockout below the trust threshold (absorbing until reset)
    - Playback guard wiring (anti-forwarding)
    - Persistence after every mutation and administrative reset

    All public methods and timer callbacks run under one re-entrant lock,
    so a signal's log append, score update and phase transition complete
    before anything else touches the session.
    """

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    def __init__(
        self,
        session_id: str,
        store: "SessionStore",
        media: Optional[MediaControllerProtocol] = None,
        renderer: Optional[OverlayRendererProtocol] = None,
        scheduler: Optional[Any] = None,
        classifier: Optional[ViolationClassifier] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Args:
            session_id: Id of the session record to load on start().
            store: Persistence collaborator (load/save/reset).
            media: Media controller for the lesson video, if any.
            renderer: Overlay renderer.
            scheduler: Timer scheduler (defaults to a wall-clock TimerScheduler).
            classifier: Violation classifier (defaults to config penalties).
            clock: Timestamp source for violations when classifier is omitted.
        """
        self.session_id = session_id
        self.store = store
        self.media = media
        self.renderer = renderer
        self.scheduler = scheduler or TimerScheduler()
        self.classifier = classifier or ViolationClassifier(clock=clock)
        self.guard = PlaybackGuard()
        self.ledger: Optional[TrustScoreLedger] = None

        # Phase state (only this class mutates it)
        self.phase: SessionPhase = SessionPhase.NORMAL
        self.is_started: bool = False
        self.penalty_locked: bool = False  # True while a recalibration countdown runs
        self.countdown_remaining: int = 0

        # Timers; callbacks from an older generation are dropped
        self._countdown_timer: Optional[TimerHandle] = None
        self._blackout_timer: Optional[TimerHandle] = None
        self._generation: int = 0

        self._base_watch_seconds: float = 0.0
        self.blocked_action_count: int = 0
        self._lock = threading.RLock()

        # ---- Callbacks (set by the host) ----
        self.on_phase_change: Optional[Callable[[SessionPhase, SessionPhase], None]] = None
        self.on_violation: Optional[Callable[[Violation, int], None]] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> Dict:
        """
        Load the session and apply the initial lockout check.

        Returns:
            The status dict (see get_status()).

        Raises:
            InvalidSessionError: If the store has no record for session_id.
        """
        with self._lock:
            if self.is_started:
                logger.debug(f"Engine for {self.session_id} already started")
                return self.get_status()

            session = self.store.load(self.session_id)
            self.ledger = TrustScoreLedger(session)
            self.ledger.on_penalty = self._on_penalty
            self._base_watch_seconds = session.watch_seconds
            self.is_started = True

            if self.media is not None:
                self.guard.load_media(self.media)

            logger.info(f"Session {self.session_id} started (score {session.trust_score})")

            if session.is_below_threshold:
                logger.warning(f"Session {self.session_id} loaded below threshold, locking out")
                self._enter_lockout()

            return self.get_status()

    def stop(self) -> None:
        """Cancel pending timers and flush state to the store."""
        with self._lock:
            if not self.is_started:
                return
            self._cancel_timers()
            self._persist()
            self.is_started = False
            logger.info(f"Session {self.session_id} stopped")

    def attach_media(self, media: MediaControllerProtocol) -> None:
        """
        Bind a new media item (resets the playback high-water mark).

        Ignored while locked out.
        """
        with self._lock:
            if self.phase == SessionPhase.LOCKED_OUT:
                logger.warning("Cannot attach media while locked out")
                return
            self._base_watch_seconds += self.guard.take_watched_seconds()
            self.media = media
            self.guard.load_media(media)
            logger.info("New media attached")

    # ------------------------------------------------------------------
    # Signal dispatch
    # ------------------------------------------------------------------

    def dispatch(self, signal: Signal) -> Optional[Violation]:
        """
        Process one learner signal to completion.

        Args:
            signal: Any signal record from signals.events.

        Returns:
            The violation recorded for this signal, or None.
        """
        with self._lock:
            if not self.is_started or self.ledger is None:
                logger.warning(f"Signal {type(signal).__name__} before start() ignored")
                return None

            if self.phase == SessionPhase.LOCKED_OUT:
                logger.debug(f"Locked out, {type(signal).__name__} ignored")
                return None

            if isinstance(signal, PlaybackTimeUpdate):
                self.guard.on_time_update(signal.current_time, signal.seeking)
                return None

            if isinstance(signal, PlaybackSeekAttempt):
                return self._handle_seek(signal.target_time)

            if isinstance(signal, BlockedAction):
                self.blocked_action_count += 1
                logger.debug(f"Blocked input action: {signal.action.value}")
                return None

            violation = self.classifier.classify(signal, self.phase)
            if violation is not None:
                self.ledger.apply_penalty(violation)
                if self.phase == SessionPhase.LOCKED_OUT:
                    return violation

            if isinstance(signal, FocusLost):
                if violation is not None:
                    self._enter_recalibrating()
                elif self.phase == SessionPhase.MOMENTARY_BLACKOUT:
                    # Not charged again, but the learner is away: escalate
                    self._cancel_timers()
                    self._enter_recalibrating()
                else:
                    logger.debug(f"FocusLost absorbed during {self.phase.value}")

            elif isinstance(signal, FocusReturned):
                self._handle_focus_returned()

            elif isinstance(signal, WindowResized):
                if self.phase == SessionPhase.NORMAL:
                    self._enter_momentary_blackout()
                else:
                    logger.debug(f"Resize ignored during {self.phase.value}")

            elif isinstance(signal, KeyCombo):
                if (violation is not None
                        and violation.kind == ViolationKind.SCREENSHOT_ATTEMPT
                        and self.phase == SessionPhase.NORMAL):
                    self._enter_momentary_blackout()

            return violation

    def _handle_seek(self, target_time: float) -> Optional[Violation]:
        """Run a seek through the guard; optionally score a rejection."""
        decision = self.guard.on_seek_attempt(target_time)
        if decision.allowed:
            return None

        self._render("show_toast", config.FORWARD_SEEK_MESSAGE)
        violation = self.classifier.forward_seek_violation(self.phase)
        if violation is not None:
            self.ledger.apply_penalty(violation)
        return violation

    def _handle_focus_returned(self) -> None:
        if self.phase != SessionPhase.RECALIBRATING:
            logger.debug(f"FocusReturned ignored during {self.phase.value}")
            return
        if self.penalty_locked:
            logger.debug("Recalibration countdown already running")
            return
        self._start_countdown()

    # ------------------------------------------------------------------
    # Ledger notification
    # ------------------------------------------------------------------

    def _on_penalty(self, new_score: int, violation: Violation) -> None:
        """Called synchronously by the ledger after every penalty."""
        if self._persist():
            # An unlock landed first; charge this signal on the fresh ledger
            self.ledger.apply_penalty(violation)
            return

        self._render("show_toast", f"Violation: {violation.reason} (-{violation.deduction} pts)")

        if self.on_violation:
            try:
                self.on_violation(violation, new_score)
            except Exception as e:
                logger.debug(f"on_violation callback error: {e}")

        if new_score < config.LOCKOUT_THRESHOLD:
            self._enter_lockout()

    # ------------------------------------------------------------------
    # Phase transitions
    # ------------------------------------------------------------------

    def _enter_recalibrating(self) -> None:
        self._set_phase(SessionPhase.RECALIBRATING)
        self._media("pause")
        self._media("set_opacity", 0)
        self._render("show_blackout", True)

    def _start_countdown(self) -> None:
        """Begin the fixed recalibration countdown (cannot be skipped)."""
        self.penalty_locked = True
        self.countdown_remaining = config.RECALIBRATION_SECONDS
        self._render("show_countdown", self.countdown_remaining)
        self._schedule_countdown_tick()
        logger.info(f"Recalibration countdown started ({self.countdown_remaining}s)")

    def _schedule_countdown_tick(self) -> None:
        generation = self._generation
        self._countdown_timer = self.scheduler.call_later(1.0, lambda: self._countdown_tick(generation))

    def _countdown_tick(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self.phase != SessionPhase.RECALIBRATING:
                return

            self.countdown_remaining -= 1
            if self.countdown_remaining > 0:
                self._render("show_countdown", self.countdown_remaining)
                self._schedule_countdown_tick()
                return

            self._finish_recalibration()

    def _finish_recalibration(self) -> None:
        self.penalty_locked = False
        self.countdown_remaining = 0
        self._countdown_timer = None
        self._render("hide_blackout")
        self._media("set_opacity", 1)
        self._media("play")
        self._set_phase(SessionPhase.NORMAL)

    def _enter_momentary_blackout(self) -> None:
        self._set_phase(SessionPhase.MOMENTARY_BLACKOUT)
        self._media("set_opacity", 0)
        self._render("show_blackout", False)

        generation = self._generation
        self._blackout_timer = self.scheduler.call_later(
            config.MOMENTARY_BLACKOUT_SECONDS,
            lambda: self._end_momentary_blackout(generation),
        )

    def _end_momentary_blackout(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self.phase != SessionPhase.MOMENTARY_BLACKOUT:
                return
            self._blackout_timer = None
            self._media("set_opacity", 1)
            self._render("hide_blackout")
            self._set_phase(SessionPhase.NORMAL)

    def _enter_lockout(self) -> None:
        """Absorbing lockout: stop timers, detach media, show the notice."""
        if self.phase == SessionPhase.LOCKED_OUT:
            return

        self._cancel_timers()
        self.penalty_locked = False
        self.countdown_remaining = 0

        self._media("pause")
        self._media("detach")
        self._base_watch_seconds += self.guard.take_watched_seconds()
        self.guard.unbind()
        self.media = None

        self._render("show_lockout_notice")
        self._set_phase(SessionPhase.LOCKED_OUT)
        logger.warning(f"Session {self.session_id} locked out (score {self.ledger.trust_score})")

    def _set_phase(self, new_phase: SessionPhase) -> None:
        old_phase = self.phase
        if old_phase == new_phase:
            return
        self.phase = new_phase
        logger.info(f"Phase {old_phase.value} -> {new_phase.value}")
        if self.on_phase_change:
            try:
                self.on_phase_change(old_phase, new_phase)
            except Exception as e:
                logger.debug(f"on_phase_change callback error: {e}")

    def _cancel_timers(self) -> None:
        """Cancel outstanding timers and invalidate in-flight callbacks."""
        self._generation += 1
        for handle in (self._countdown_timer, self._blackout_timer):
            if handle is not None:
                handle.cancel()
        self._countdown_timer = None
        self._blackout_timer = None

    # ------------------------------------------------------------------
    # Administrative reset
    # ------------------------------------------------------------------

    def reset_session(self, session_id: str) -> None:
        """
        Administrative unlock: score 100, empty log, phase NORMAL.

        Only the instructor-facing collaborator calls this. It always wins:
        it runs after any in-flight signal and bumps the reset epoch so
        stale writes are refused by the store.

        Raises:
            InvalidSessionError: If session_id is not this engine's session
                                 or has no backing record.
        """
        with self._lock:
            if session_id != self.session_id:
                raise InvalidSessionError(session_id)

            try:
                stored = self.store.reset(session_id)
            except PersistenceError as e:
                logger.error(f"Reset of {session_id} not persisted: {e}")
                stored = None

            if self.ledger is None:
                logger.info(f"Session {session_id} reset before engine start")
                return

            if stored is not None:
                self.ledger.adopt_reset(stored.reset_epoch)
            else:
                self.ledger.reset()
            self._restore_after_reset()

    def refresh_from_store(self) -> bool:
        """
        Pick up a reset performed elsewhere (polled by the monitoring tick).

        Returns:
            True if an external reset was applied.
        """
        with self._lock:
            if not self.is_started or self.ledger is None:
                return False
            try:
                stored = self.store.load(self.session_id)
            except InvalidSessionError:
                logger.warning(f"Session {self.session_id} no longer in store")
                return False

            if stored.reset_epoch <= self.ledger.reset_epoch:
                return False

            self.ledger.adopt_reset(stored.reset_epoch)
            self._restore_after_reset()
            return True

    def _restore_after_reset(self) -> None:
        self._cancel_timers()
        self.penalty_locked = False
        self.countdown_remaining = 0
        self._render("hide_blackout")
        self._media("set_opacity", 1)
        self._set_phase(SessionPhase.NORMAL)
        logger.info(f"Session {self.session_id} restored to NORMAL by reset")

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> Dict:
        """
        Get current engine status (polled by the host UI).

        Returns:
            dict with keys: session_id, phase, trust_score, violation_count,
            countdown_remaining, is_locked, recent_violations,
            max_watched_time, watch_seconds, blocked_actions.
        """
        with self._lock:
            if self.ledger is not None:
                score, log = self.ledger.snapshot()
            else:
                score, log = config.INITIAL_TRUST_SCORE, ()

            recent = list(reversed(log[-config.RECENT_VIOLATIONS_LIMIT:]))
            return {
                "session_id": self.session_id,
                "phase": self.phase.value,
                "trust_score": score,
                "violation_count": len(log),
                "countdown_remaining": self.countdown_remaining,
                "is_locked": self.phase == SessionPhase.LOCKED_OUT,
                "recent_violations": [v.to_dict() for v in recent],
                "max_watched_time": self.guard.max_watched_time,
                "watch_seconds": self._base_watch_seconds + self.guard.watched_seconds,
                "blocked_actions": self.blocked_action_count,
            }

    def recent_violations(self, n: int = config.RECENT_VIOLATIONS_LIMIT) -> List[Violation]:
        """Last n violations, most recent first (empty before start)."""
        if self.ledger is None:
            return []
        return self.ledger.recent_violations(n)

    # ------------------------------------------------------------------
    # Collaborator helpers
    # ------------------------------------------------------------------

    def _persist(self) -> bool:
        """
        Save the session; failures never roll back in-memory state.

        A refused write may mean an administrator reset the session from
        another process, in which case that reset is adopted right away.

        Returns:
            True if the write was refused and an external reset adopted.
        """
        if self.ledger is None:
            return False
        session = self.ledger.copy_session()
        session.watch_seconds = self._base_watch_seconds + self.guard.watched_seconds
        try:
            saved = self.store.save(session)
        except Exception as e:
            logger.error(f"Persisting session {self.session_id} failed: {e}")
            return False

        if saved:
            return False
        return self.refresh_from_store()

    def _media(self, command: str, *args) -> None:
        if self.media is None:
            logger.debug(f"No media bound, {command} skipped")
            return
        try:
            getattr(self.media, command)(*args)
        except Exception as e:
            logger.debug(f"Media {command} failed: {e}")

    def _render(self, command: str, *args) -> None:
        if self.renderer is None:
            return
        try:
            getattr(self.renderer, command)(*args)
        except Exception as e:
            logger.debug(f"Renderer {command} failed: {e}")
