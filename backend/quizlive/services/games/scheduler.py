import contextlib
import threading
import time
from typing import Optional, Set, Tuple

from flask import current_app, has_app_context

from quizlive import socketio
from quizlive.services.games.controller import GamePhaseController
from quizlive.services.games.phases import Phase
from quizlive.services.store import current_store


_scheduled_keys: Set[Tuple[int, str, int]] = set()
_keys_lock = threading.Lock()


def _app_scope(app):
    # Inline (test) runs stay on the caller's context and session
    if has_app_context() and current_app._get_current_object() is app:
        return contextlib.nullcontext()
    return app.app_context()


def build_controller(app) -> GamePhaseController:
    return GamePhaseController(current_store(), max_attempts=int(app.config.get('TRANSITION_MAX_ATTEMPTS', 3)))


def _next_step(app, game) -> Tuple[Optional[str], float]:
    if game.phase != Phase.QUIZ:
        return None, 0
    if game.is_answer_revealed:
        return 'advance', float(app.config.get('REVEAL_HOLD_SEC', 6))
    window_ms = int(app.config.get('CHOICE_REVEAL_DELAY_MS', 4000)) + int(app.config.get('ANSWER_WINDOW_MS', 20000))
    return 'reveal', window_ms / 1000.0


def schedule_phase_timer(app, game_id: int) -> None:
    """Arm the auto-advance timer for the game's current step.

    - No-ops unless AUTO_ADVANCE is on, and in TESTING unless explicitly enabled
    - One timer per (game_id, step, sequence)
    - On fire, the controller re-checks phase/sequence/reveal, so a timer
      armed for an earlier state does nothing
    """
    if not app.config.get('AUTO_ADVANCE'):
        return
    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return

    with _app_scope(app):
        game = current_store().get_game(game_id)
        if game is None:
            return
        step, delay = _next_step(app, game)
        if step is None:
            return
        seq = game.current_question_sequence
        key = (game.id, step, seq)
        with _keys_lock:
            if key in _scheduled_keys:
                app.logger.info(f"[timer-skip] game={game.id} step={step} seq={seq} already scheduled")
                return
            _scheduled_keys.add(key)
        app.logger.info(f"[timer-set] game={game.id} step={step} seq={seq} delay={delay}s")

    def _worker(expected_step: str, gid: int, expected_seq: int, wait: float):
        hb = int(app.config.get('TIMER_HEARTBEAT_SEC', 0) or 0)
        if hb > 0:
            slept = 0.0
            while slept < wait:
                step_sleep = min(hb, wait - slept)
                time.sleep(step_sleep)
                slept += step_sleep
                app.logger.info(f"[timer-heartbeat] game={gid} step={expected_step} seq={expected_seq} remaining={max(0, wait - slept)}s")
        elif wait > 0:
            time.sleep(wait)

        with _app_scope(app):
            with _keys_lock:
                _scheduled_keys.discard((gid, expected_step, expected_seq))
            controller = build_controller(app)
            app.logger.info(f"[timer-fire] game={gid} step={expected_step} seq={expected_seq}")
            if expected_step == 'reveal':
                result = controller.reveal_answer(gid, expected_sequence=expected_seq)
            else:
                result = controller.advance_question(gid, expected_sequence=expected_seq)
            if not result.applied:
                app.logger.info(f"[timer-abort] game={gid} step={expected_step} reason={result.reason}")
                return
        schedule_phase_timer(app, gid)

    if app.config.get('TESTING'):
        _worker(step, game.id, seq, delay)
    else:
        socketio.start_background_task(_worker, step, game.id, seq, delay)


def reset_timers() -> None:
    with _keys_lock:
        _scheduled_keys.clear()
