"""
Tests for core/engine.py: verifies the SessionEngine state machine works
independently of any UI, driven by a virtual-clock scheduler.
"""

import sys
import tempfile
import time
import unittest
import logging
from pathlib import Path
from unittest.mock import MagicMock, patch

# Ensure project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

import config
from core.engine import SessionEngine
from core.errors import InvalidSessionError
from core.timers import ManualScheduler, TimerScheduler
from signals.events import (
    BlockedAction,
    BlockedInput,
    FocusLost,
    FocusReturned,
    KeyCombo,
    KeyComboId,
    PlaybackSeekAttempt,
    PlaybackTimeUpdate,
    REASON_VISIBILITY_HIDDEN,
    WindowResized,
)
from storage.session_store import SessionStore
from tracking.session import SessionPhase, ViolationKind
from tracking.violations import ViolationClassifier

logger = logging.getLogger(__name__)


class EngineTestCase(unittest.TestCase):
    """Shared fixture: a store in a temp dir, mocked media and renderer."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.store = SessionStore(Path(self.tmpdir.name) / "sessions.json")
        self.store.create("s1", "Test Learner")
        self.scheduler = ManualScheduler()
        self.media = MagicMock()
        self.renderer = MagicMock()

    def tearDown(self):
        self.tmpdir.cleanup()

    def make_engine(self, score=None, classifier=None, start=True):
        if score is not None:
            session = self.store.load("s1")
            session.trust_score = score
            self.store.save(session)

        engine = SessionEngine(
            "s1",
            self.store,
            media=self.media,
            renderer=self.renderer,
            scheduler=self.scheduler,
            classifier=classifier or ViolationClassifier(clock=self.scheduler.clock),
        )
        if start:
            engine.start()
        return engine


class TestSessionEngineInit(EngineTestCase):
    """Test engine initialisation and default state."""

    def test_init_defaults(self):
        """Engine initialises in NORMAL with no ledger until started."""
        engine = self.make_engine(start=False)
        self.assertEqual(engine.phase, SessionPhase.NORMAL)
        self.assertFalse(engine.is_started)
        self.assertIsNone(engine.ledger)
        self.assertIsNone(engine.on_phase_change)
        self.assertIsNone(engine.on_violation)

    def test_start_returns_status(self):
        """start() loads the stored session and reports its status."""
        engine = self.make_engine(start=False)
        status = engine.start()
        self.assertEqual(status["session_id"], "s1")
        self.assertEqual(status["trust_score"], 100)
        self.assertEqual(status["phase"], "normal")
        self.assertFalse(status["is_locked"])

    def test_start_unknown_session_raises(self):
        """The engine never fabricates a session."""
        engine = SessionEngine("missing", self.store, scheduler=self.scheduler)
        with self.assertRaises(InvalidSessionError):
            engine.start()
        self.assertFalse(engine.is_started)

    def test_start_below_threshold_locks_out(self):
        """A session loaded under the threshold is locked out immediately."""
        engine = self.make_engine(score=45)
        self.assertEqual(engine.phase, SessionPhase.LOCKED_OUT)
        self.media.pause.assert_called()
        self.media.detach.assert_called_once()
        self.renderer.show_lockout_notice.assert_called_once()

    def test_dispatch_before_start_ignored(self):
        """Signals before start() have no effect."""
        engine = self.make_engine(start=False)
        self.assertIsNone(engine.dispatch(FocusLost()))
        self.assertEqual(engine.phase, SessionPhase.NORMAL)


class TestRecalibration(EngineTestCase):
    """Focus loss, recalibration countdown and debouncing."""

    def test_focus_lost_scenario(self):
        """100 -> FocusLost (95, RECALIBRATING) -> FocusReturned -> 3s -> NORMAL at 95."""
        engine = self.make_engine()

        violation = engine.dispatch(FocusLost())
        self.assertEqual(violation.kind, ViolationKind.FOCUS_LOST)
        self.assertEqual(engine.ledger.trust_score, 95)
        self.assertEqual(engine.phase, SessionPhase.RECALIBRATING)
        self.media.pause.assert_called_once()
        self.media.set_opacity.assert_called_with(0)
        self.renderer.show_blackout.assert_called_once_with(True)

        engine.dispatch(FocusReturned())
        self.assertEqual(engine.phase, SessionPhase.RECALIBRATING)
        self.assertTrue(engine.penalty_locked)

        self.scheduler.advance(2.5)
        self.assertEqual(engine.phase, SessionPhase.RECALIBRATING)

        self.scheduler.advance(0.5)
        self.assertEqual(engine.phase, SessionPhase.NORMAL)
        self.assertEqual(engine.ledger.trust_score, 95)
        self.assertFalse(engine.penalty_locked)
        self.media.play.assert_called_once()
        self.renderer.hide_blackout.assert_called_once()

        shown = [c.args[0] for c in self.renderer.show_countdown.call_args_list]
        self.assertEqual(shown, [3, 2, 1])

    def test_tab_switch_classified(self):
        """A hidden document is a tab switch."""
        engine = self.make_engine()
        violation = engine.dispatch(FocusLost(reason=REASON_VISIBILITY_HIDDEN))
        self.assertEqual(violation.kind, ViolationKind.TAB_SWITCH)
        self.assertEqual(engine.phase, SessionPhase.RECALIBRATING)

    def test_double_focus_lost_single_penalty(self):
        """Blur + hidden firing together is one violation."""
        engine = self.make_engine()
        engine.dispatch(FocusLost(reason=REASON_VISIBILITY_HIDDEN))
        self.assertIsNone(engine.dispatch(FocusLost()))
        self.assertEqual(engine.ledger.violation_count, 1)
        self.assertEqual(engine.ledger.trust_score, 95)

    def test_repeated_focus_returned_single_countdown(self):
        """A second FocusReturned during the countdown does nothing."""
        engine = self.make_engine()
        engine.dispatch(FocusLost())
        engine.dispatch(FocusReturned())
        self.scheduler.advance(1.0)
        engine.dispatch(FocusReturned())
        self.assertEqual(self.scheduler.pending(), 1)

        self.scheduler.advance(2.0)
        self.assertEqual(engine.phase, SessionPhase.NORMAL)
        self.assertEqual(self.renderer.show_countdown.call_count, 3)

    def test_focus_lost_during_countdown_absorbed(self):
        """Losing focus again while counting down is not charged."""
        engine = self.make_engine()
        engine.dispatch(FocusLost())
        engine.dispatch(FocusReturned())
        self.assertIsNone(engine.dispatch(FocusLost()))
        self.assertEqual(engine.ledger.violation_count, 1)

    def test_focus_returned_in_normal_ignored(self):
        """FocusReturned without a prior loss starts nothing."""
        engine = self.make_engine()
        engine.dispatch(FocusReturned())
        self.assertEqual(engine.phase, SessionPhase.NORMAL)
        self.assertEqual(self.scheduler.pending(), 0)

    def test_key_combos_not_debounced(self):
        """Key presses are scored even while recalibrating."""
        engine = self.make_engine()
        engine.dispatch(FocusLost())
        engine.dispatch(KeyCombo(KeyComboId.F12))
        engine.dispatch(KeyCombo(KeyComboId.CTRL_S))
        self.assertEqual(engine.ledger.violation_count, 3)
        self.assertEqual(engine.ledger.trust_score, 75)
        self.assertEqual(engine.phase, SessionPhase.RECALIBRATING)


class TestMomentaryBlackout(EngineTestCase):
    """Resize and screenshot blackouts."""

    def test_resize_scenario(self):
        """Resize blacks out for 1.5s without logging a violation."""
        engine = self.make_engine()
        self.assertIsNone(engine.dispatch(WindowResized()))
        self.assertEqual(engine.phase, SessionPhase.MOMENTARY_BLACKOUT)
        self.renderer.show_blackout.assert_called_once_with(False)

        self.scheduler.advance(1.0)
        self.assertEqual(engine.phase, SessionPhase.MOMENTARY_BLACKOUT)
        self.scheduler.advance(0.5)
        self.assertEqual(engine.phase, SessionPhase.NORMAL)
        self.assertEqual(engine.ledger.trust_score, 100)
        self.assertEqual(engine.ledger.violation_count, 0)
        self.media.set_opacity.assert_called_with(1)

    def test_resize_penalized_when_enabled(self):
        """The resize policy flag turns the blackout into a scored violation."""
        classifier = ViolationClassifier(penalize_window_resize=True, clock=self.scheduler.clock)
        engine = self.make_engine(classifier=classifier)
        violation = engine.dispatch(WindowResized())
        self.assertEqual(violation.kind, ViolationKind.WINDOW_RESIZE)
        self.assertEqual(engine.phase, SessionPhase.MOMENTARY_BLACKOUT)

    def test_screenshot_blackout(self):
        """Screenshot costs 20 and blacks out momentarily."""
        engine = self.make_engine()
        violation = engine.dispatch(KeyCombo(KeyComboId.PRINT_SCREEN))
        self.assertEqual(violation.deduction, 20)
        self.assertEqual(engine.ledger.trust_score, 80)
        self.assertEqual(engine.phase, SessionPhase.MOMENTARY_BLACKOUT)
        self.scheduler.advance(config.MOMENTARY_BLACKOUT_SECONDS)
        self.assertEqual(engine.phase, SessionPhase.NORMAL)

    def test_focus_lost_during_blackout_not_charged(self):
        """Focus loss during a momentary blackout carries no second penalty."""
        engine = self.make_engine()
        engine.dispatch(WindowResized())
        self.assertIsNone(engine.dispatch(FocusLost()))
        self.assertEqual(engine.ledger.violation_count, 0)
        self.assertEqual(engine.phase, SessionPhase.RECALIBRATING)

    def test_tab_switch_after_screenshot_escalates(self):
        """Leaving during a screenshot blackout still pauses and recalibrates."""
        engine = self.make_engine()
        engine.dispatch(KeyCombo(KeyComboId.PRINT_SCREEN))
        engine.dispatch(FocusLost(reason=REASON_VISIBILITY_HIDDEN))

        self.scheduler.advance(2.0)
        self.assertEqual(engine.phase, SessionPhase.RECALIBRATING)
        self.assertEqual(engine.ledger.trust_score, 80)
        self.assertEqual([v.kind for v in engine.recent_violations()],
                         [ViolationKind.SCREENSHOT_ATTEMPT])
        self.media.pause.assert_called_once()
        self.media.set_opacity.assert_called_with(0)
        self.renderer.show_blackout.assert_called_with(True)

        engine.dispatch(FocusReturned())
        self.scheduler.advance(3.0)
        self.assertEqual(engine.phase, SessionPhase.NORMAL)
        self.media.play.assert_called_once()

    def test_resize_during_recalibration_ignored(self):
        """Resize cannot lift the persistent recalibration overlay."""
        engine = self.make_engine()
        engine.dispatch(FocusLost())
        engine.dispatch(WindowResized())
        self.assertEqual(engine.phase, SessionPhase.RECALIBRATING)
        self.scheduler.advance(5.0)
        self.assertEqual(engine.phase, SessionPhase.RECALIBRATING)

    def test_wall_clock_blackout(self):
        """The real TimerScheduler reverts the blackout on its own."""
        engine = SessionEngine("s1", self.store, media=self.media, scheduler=TimerScheduler())
        engine.start()
        with patch.object(config, "MOMENTARY_BLACKOUT_SECONDS", 0.05):
            engine.dispatch(WindowResized())
        time.sleep(0.5)
        self.assertEqual(engine.phase, SessionPhase.NORMAL)


class TestLockout(EngineTestCase):
    """Lockout entry, absorption and administrative reset."""

    def test_screenshot_from_sixty_locks_out(self):
        """60 -> screenshot (-20) -> 40 -> LOCKED_OUT."""
        engine = self.make_engine(score=60)
        engine.dispatch(KeyCombo(KeyComboId.PRINT_SCREEN))
        self.assertEqual(engine.ledger.trust_score, 40)
        self.assertEqual(engine.phase, SessionPhase.LOCKED_OUT)
        self.assertIsNone(engine.media)
        self.assertFalse(engine.guard.has_media)
        self.renderer.show_lockout_notice.assert_called_once()

    def test_lockout_from_recalibrating(self):
        """Lockout wins over any prior phase and cancels the countdown."""
        engine = self.make_engine(score=55)
        engine.dispatch(FocusLost())
        engine.dispatch(FocusReturned())
        engine.dispatch(KeyCombo(KeyComboId.CTRL_U))
        self.assertEqual(engine.phase, SessionPhase.LOCKED_OUT)
        self.scheduler.advance(10.0)
        self.assertEqual(engine.phase, SessionPhase.LOCKED_OUT)

    def test_score_fifty_is_not_locked(self):
        """The threshold is strict: exactly 50 stays unlocked."""
        engine = self.make_engine(score=55)
        engine.dispatch(FocusLost())
        self.assertEqual(engine.ledger.trust_score, 50)
        self.assertEqual(engine.phase, SessionPhase.RECALIBRATING)

    def test_focus_lost_crossing_threshold_skips_recalibration(self):
        """A focus violation that locks out does not also open the overlay."""
        engine = self.make_engine(score=50)
        engine.dispatch(FocusLost())
        self.assertEqual(engine.phase, SessionPhase.LOCKED_OUT)
        self.renderer.show_blackout.assert_not_called()

    def test_lockout_absorbs_signals(self):
        """No signal changes score or log once locked out."""
        engine = self.make_engine(score=45)
        before = engine.ledger.snapshot()
        for signal in (FocusLost(), FocusReturned(), WindowResized(),
                       KeyCombo(KeyComboId.PRINT_SCREEN), PlaybackSeekAttempt(100.0),
                       PlaybackTimeUpdate(5.0)):
            self.assertIsNone(engine.dispatch(signal))
        self.assertEqual(engine.ledger.snapshot(), before)
        self.assertEqual(engine.phase, SessionPhase.LOCKED_OUT)

    def test_reset_leaves_lockout(self):
        """Administrative reset restores 100, clears the log, returns to NORMAL."""
        engine = self.make_engine(score=60)
        engine.dispatch(KeyCombo(KeyComboId.PRINT_SCREEN))
        self.assertEqual(engine.phase, SessionPhase.LOCKED_OUT)

        engine.reset_session("s1")
        self.assertEqual(engine.phase, SessionPhase.NORMAL)
        score, log = engine.ledger.snapshot()
        self.assertEqual(score, 100)
        self.assertEqual(log, ())

        stored = self.store.load("s1")
        self.assertEqual(stored.trust_score, 100)
        self.assertEqual(stored.violation_log, [])
        self.assertEqual(stored.reset_epoch, 1)

    def test_reset_wrong_session_raises(self):
        """reset_session only accepts this engine's session id."""
        engine = self.make_engine()
        with self.assertRaises(InvalidSessionError):
            engine.reset_session("other")

    def test_reset_cancels_countdown(self):
        """A reset mid-countdown leaves no stale timer behind."""
        engine = self.make_engine()
        engine.dispatch(FocusLost())
        engine.dispatch(FocusReturned())
        engine.reset_session("s1")
        self.assertEqual(engine.phase, SessionPhase.NORMAL)
        self.assertFalse(engine.penalty_locked)
        calls_before = self.renderer.show_countdown.call_count
        self.scheduler.advance(5.0)
        self.assertEqual(self.renderer.show_countdown.call_count, calls_before)
        self.media.play.assert_not_called()

    def test_signals_processed_after_reset(self):
        """After an unlock and media reattach, the engine scores again."""
        engine = self.make_engine(score=45)
        engine.reset_session("s1")
        new_media = MagicMock()
        engine.attach_media(new_media)
        engine.dispatch(FocusLost())
        self.assertEqual(engine.ledger.trust_score, 95)
        new_media.pause.assert_called_once()


class TestExternalReset(EngineTestCase):
    """Resets made through the store by another process."""

    def test_refresh_adopts_newer_reset(self):
        """The polling tick picks up an unlock done elsewhere."""
        engine = self.make_engine(score=45)
        self.store.reset("s1")
        self.assertTrue(engine.refresh_from_store())
        self.assertEqual(engine.phase, SessionPhase.NORMAL)
        self.assertEqual(engine.ledger.trust_score, 100)
        self.assertFalse(engine.refresh_from_store())

    def test_stale_write_replays_violation_after_reset(self):
        """A penalty racing an external reset is charged on top of the reset."""
        engine = self.make_engine(score=70)
        self.store.reset("s1")
        engine.dispatch(KeyCombo(KeyComboId.CTRL_P))
        self.assertEqual(engine.ledger.trust_score, 90)
        self.assertEqual(engine.ledger.violation_count, 1)
        stored = self.store.load("s1")
        self.assertEqual(stored.trust_score, 90)
        self.assertEqual(stored.reset_epoch, 1)

    def test_focus_lost_after_external_reset_matches_log(self):
        """Notifications after an adopted reset describe what the log holds."""
        engine = self.make_engine(score=70)
        violations = []
        engine.on_violation = lambda v, s: violations.append((v.kind, s))
        self.store.reset("s1")

        violation = engine.dispatch(FocusLost(reason=REASON_VISIBILITY_HIDDEN))

        self.assertEqual(violation.kind, ViolationKind.TAB_SWITCH)
        self.assertEqual(engine.phase, SessionPhase.RECALIBRATING)
        score, log = engine.ledger.snapshot()
        self.assertEqual(score, 95)
        self.assertEqual([v.kind for v in log], [ViolationKind.TAB_SWITCH])
        self.assertEqual(violations, [(ViolationKind.TAB_SWITCH, 95)])
        toasts = [c.args[0] for c in self.renderer.show_toast.call_args_list]
        self.assertEqual(toasts, ["Violation: Tab Switch / Minimized (-5 pts)"])
        self.assertEqual(self.store.load("s1").trust_score, 95)


class TestPlaybackWiring(EngineTestCase):
    """Playback signals go through the guard."""

    def test_forward_seek_rejected(self):
        """A forward seek is clamped with a toast and no penalty by default."""
        engine = self.make_engine()
        engine.dispatch(PlaybackTimeUpdate(30.0))
        self.assertIsNone(engine.dispatch(PlaybackSeekAttempt(60.0)))
        self.media.set_current_time.assert_called_once_with(30.0)
        self.renderer.show_toast.assert_called_once_with(config.FORWARD_SEEK_MESSAGE)
        self.assertEqual(engine.ledger.violation_count, 0)

    def test_forward_seek_penalized_when_enabled(self):
        """The forward-seek policy flag scores rejected seeks."""
        classifier = ViolationClassifier(penalize_forward_seek=True, clock=self.scheduler.clock)
        engine = self.make_engine(classifier=classifier)
        violation = engine.dispatch(PlaybackSeekAttempt(60.0))
        self.assertEqual(violation.kind, ViolationKind.FORWARD_SEEK_ATTEMPT)
        self.assertEqual(engine.ledger.trust_score, 95)
        self.assertEqual(engine.phase, SessionPhase.NORMAL)

    def test_rewind_allowed(self):
        """Rewinding never triggers the guard."""
        engine = self.make_engine()
        engine.dispatch(PlaybackTimeUpdate(30.0))
        engine.dispatch(PlaybackSeekAttempt(5.0))
        self.media.set_current_time.assert_not_called()

    def test_watch_time_persisted(self):
        """Watched time reaches the store when the engine stops."""
        engine = self.make_engine()
        for t in (1.0, 2.0, 3.0, 4.0):
            engine.dispatch(PlaybackTimeUpdate(t))
        engine.stop()
        self.assertAlmostEqual(self.store.load("s1").watch_seconds, 3.0)

    def test_watch_time_survives_lockout(self):
        """Watched time is folded into the total when media is detached."""
        engine = self.make_engine(score=60)
        for t in (1.0, 2.0, 3.0):
            engine.dispatch(PlaybackTimeUpdate(t))
        engine.dispatch(KeyCombo(KeyComboId.PRINT_SCREEN))
        self.assertEqual(engine.phase, SessionPhase.LOCKED_OUT)
        self.assertEqual(engine.guard.watched_seconds, 0.0)
        self.assertAlmostEqual(engine.get_status()["watch_seconds"], 2.0)


class TestCollaboratorFailures(EngineTestCase):
    """Collaborator errors never break the state machine."""

    def test_persistence_failure_keeps_state(self):
        """A failing store leaves the in-memory penalty and phase in place."""
        engine = self.make_engine()
        with patch.object(self.store, "save", side_effect=OSError("disk full")):
            engine.dispatch(FocusLost())
        self.assertEqual(engine.ledger.trust_score, 95)
        self.assertEqual(engine.phase, SessionPhase.RECALIBRATING)

    def test_renderer_exception_swallowed(self):
        """Broken renderer calls don't crash the engine."""
        self.renderer.show_blackout.side_effect = RuntimeError("no DOM")
        engine = self.make_engine()
        engine.dispatch(FocusLost())
        self.assertEqual(engine.phase, SessionPhase.RECALIBRATING)

    def test_callback_exception_swallowed(self):
        """Broken host callbacks don't crash the engine."""
        engine = self.make_engine()
        engine.on_phase_change = lambda old, new: 1 / 0
        engine.on_violation = lambda v, s: 1 / 0
        engine.dispatch(KeyCombo(KeyComboId.F12))
        self.assertEqual(engine.ledger.trust_score, 90)

    def test_blocked_actions_counted_not_scored(self):
        """Right click, copy and friends are suppressed without penalty."""
        engine = self.make_engine()
        engine.dispatch(BlockedAction(BlockedInput.CONTEXT_MENU))
        engine.dispatch(BlockedAction(BlockedInput.PASTE))
        status = engine.get_status()
        self.assertEqual(status["blocked_actions"], 2)
        self.assertEqual(status["trust_score"], 100)
        self.assertEqual(status["violation_count"], 0)

    def test_callbacks_invoked(self):
        """on_phase_change and on_violation receive updates."""
        engine = self.make_engine()
        phases = []
        violations = []
        engine.on_phase_change = lambda old, new: phases.append((old, new))
        engine.on_violation = lambda v, s: violations.append((v.kind, s))
        engine.dispatch(FocusLost())
        self.assertEqual(phases, [(SessionPhase.NORMAL, SessionPhase.RECALIBRATING)])
        self.assertEqual(violations, [(ViolationKind.FOCUS_LOST, 95)])


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING)
    unittest.main()
