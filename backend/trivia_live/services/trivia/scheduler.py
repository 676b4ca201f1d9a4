import time
from typing import Set, Tuple

from trivia_live import db, socketio
from trivia_live.broadcast import publish_room_update
from trivia_live.models import Room
from .coordinator import auto_close_answers


_scheduled_close_keys: Set[Tuple[int, str, float]] = set()


def schedule_answer_close(app, room_id: int, scope: str = 'main') -> None:
    """Close the answer window of the room's current reveal once it lapses.

    - No-ops in TESTING mode unless ENABLE_SCHEDULER_IN_TESTS is set
    - No-ops when AUTO_CLOSE_ANSWERS is off (the host closes answers)
    - Ensures a single timer per (room, scope, reveal timestamp)
    - Best-effort: closing is idempotent, so racing a host close is harmless
    """
    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return
    if not app.config.get('AUTO_CLOSE_ANSWERS', True):
        return

    with app.app_context():
        room = db.session.get(Room, room_id)
        if not room:
            return
        revealed_at = room.sd_revealed_at if scope == 'sudden_death' else room.revealed_at
        accepting = room.sd_accepting_answers if scope == 'sudden_death' else room.accepting_answers
        if revealed_at is None or not accepting:
            return

        key = (room.id, scope, revealed_at)
        if key in _scheduled_close_keys:
            app.logger.info(f"[timer-skip] room={room.room_code} scope={scope} already scheduled")
            return
        _scheduled_close_keys.add(key)

        window = int(app.config.get('ANSWER_WINDOW_SEC', 30))
        delay = max(0.0, revealed_at + window - time.time())
        app.logger.info(f"[timer-set] room={room.room_code} scope={scope} window={window}s delay={delay:.1f}s")

    def _worker(rid: int, expected_scope: str, expected_revealed_at: float, wait: float):
        try:
            hb = int(app.config.get('TIMER_HEARTBEAT_SEC', 0))
        except (TypeError, ValueError):
            hb = 0
        if hb and hb > 0:
            slept = 0.0
            while slept < wait:
                step = min(hb, wait - slept)
                time.sleep(step)
                slept += step
                app.logger.info(f"[timer-heartbeat] room={rid} scope={expected_scope} remaining={max(0.0, wait - slept):.1f}s")
        else:
            time.sleep(wait)
        with app.app_context():
            _scheduled_close_keys.discard((rid, expected_scope, expected_revealed_at))
            closed = auto_close_answers(rid, expected_scope, expected_revealed_at)
            if closed is None:
                app.logger.info(f"[timer-abort] room={rid} scope={expected_scope} window already closed or replaced")
                return
            publish_room_update(closed)

    if app.config.get('TESTING'):
        _worker(room_id, scope, revealed_at, delay)
    else:
        socketio.start_background_task(_worker, room_id, scope, revealed_at, delay)
