"""The only writer of authoritative room state.

Every public function here is one unit of work: it loads what it needs,
checks host authority where required, applies state machine transitions,
ledger writes and scoring, then commits once. Any exception rolls the whole
unit back, so a failed call never leaves partial state behind.

Judging is made race-free by a conditional write on the judged column
(``UPDATE ... WHERE judged IS NULL``) executed inside the same transaction
that moves the score: of two concurrent judge calls on one row exactly one
sees an affected row, the other becomes a no-op.
"""
from contextlib import contextmanager
from dataclasses import dataclass, field
import hmac
import time
from typing import Iterable, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from trivia_live import db
from trivia_live.errors import Conflict, InvalidTransition, NotFound, Unauthorized, ValidationFailed
from trivia_live.models import (
    FINAL_INDEX,
    FinalAnswer,
    MAX_NAME_LEN,
    MAX_TITLE_LEN,
    Player,
    Room,
    SUDDEN_DEATH_INDEX,
    Submission,
    Wager,
    generate_host_secret,
    generate_room_code,
    make_question,
    safe_trim,
)
from . import ledger, state_machine
from .generation import SUDDEN_DEATH_SLOT, validate_question
from .scoring import judge_final as score_final
from .scoring import judge_standard, judge_sudden_death


@dataclass
class JudgeOutcome:
    applied: bool
    delta: int = 0
    reason: Optional[str] = None
    target: dict = field(default_factory=dict)

    def to_dict(self):
        return {'applied': self.applied, 'delta': self.delta, 'reason': self.reason, 'target': self.target}


def _now() -> float:
    return time.time()


@contextmanager
def _atomic():
    try:
        yield
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise Conflict('A concurrent write won; retry the request') from exc
    except Exception:
        db.session.rollback()
        raise


# ---- Loading and authority ----

def get_room(room_code: str) -> Room:
    room = Room.query.filter_by(room_code=(room_code or '').upper()).first()
    if room is None:
        raise NotFound('Room not found')
    return room


def authorize_host(room: Room, host_secret: Optional[str]) -> None:
    if not host_secret or not hmac.compare_digest(str(host_secret), room.host_secret):
        current_app.logger.warning(f"[unauthorized] room={room.room_code} rejected host secret")
        raise Unauthorized('Host secret does not match this room')


def load_room_as_host(room_code: str, host_secret: Optional[str]) -> Room:
    room = get_room(room_code)
    authorize_host(room, host_secret)
    return room


def get_player(room: Room, player_id: str) -> Player:
    player = Player.query.filter_by(room_id=room.id, player_id=player_id).first()
    if player is None:
        raise NotFound('Player not found in this room')
    return player


def _clean_player_id(player_id) -> str:
    if not isinstance(player_id, str) or not player_id.strip():
        raise ValidationFailed('player_id is required')
    player_id = player_id.strip()
    if len(player_id) > 64:
        raise ValidationFailed('player_id is too long')
    return player_id


# ---- Rooms and players ----

def create_room(title: Optional[str]) -> tuple:
    """Create a room in the lobby. Returns ``(room, host_secret)``."""
    with _atomic():
        host_secret = generate_host_secret()
        room = Room(
            room_code=generate_room_code(),
            host_secret=host_secret,
            title=safe_trim(title, MAX_TITLE_LEN) or 'Trivia Night',
        )
        db.session.add(room)
    current_app.logger.info(f"[create] room={room.room_code} title={room.title!r}")
    return room, host_secret


def join_as_player(room_code: str, player_id, name) -> Player:
    """Merge-upsert a player. Rejoining keeps the score and updates the name."""
    player_id = _clean_player_id(player_id)
    if name is not None and not isinstance(name, str):
        raise ValidationFailed('name must be a string')
    clean_name = safe_trim(name, MAX_NAME_LEN) or 'Player'
    with _atomic():
        room = get_room(room_code)
        player = Player.query.filter_by(room_id=room.id, player_id=player_id).first()
        if player is None:
            player = Player(room_id=room.id, player_id=player_id, name=clean_name, score=0)
            db.session.add(player)
            current_app.logger.info(f"[join] room={room.room_code} player={player_id} name={clean_name!r}")
        else:
            player.name = clean_name
    return player


def remove_player(room_code: str, player_id) -> Room:
    player_id = _clean_player_id(player_id)
    with _atomic():
        room = get_room(room_code)
        player = get_player(room, player_id)
        ledger.delete_player_entries(room, player_id)
        db.session.delete(player)
    current_app.logger.info(f"[leave] room={room.room_code} player={player_id}")
    return room


# ---- Player submissions ----

def submit_answer(room_code: str, player_id, answer, question_index: Optional[int] = None) -> Submission:
    player_id = _clean_player_id(player_id)
    with _atomic():
        room = get_room(room_code)
        player = get_player(room, player_id)
        index = room.current_index if question_index is None else question_index
        if isinstance(index, bool) or not isinstance(index, int):
            raise ValidationFailed('question_index must be an integer')
        submission = ledger.upsert_answer(room, player, index, answer, _now())
    return submission


def submit_sudden_death_answer(room_code: str, player_id, answer) -> Submission:
    return submit_answer(room_code, player_id, answer, question_index=SUDDEN_DEATH_INDEX)


def submit_wager(room_code: str, player_id, amount) -> Wager:
    player_id = _clean_player_id(player_id)
    with _atomic():
        room = get_room(room_code)
        player = get_player(room, player_id)
        wager = ledger.upsert_wager(room, player, amount)
    return wager


def submit_final_answer(room_code: str, player_id, answer) -> FinalAnswer:
    player_id = _clean_player_id(player_id)
    with _atomic():
        room = get_room(room_code)
        player = get_player(room, player_id)
        final_answer = ledger.upsert_final_answer(room, player, answer, _now())
    return final_answer


# ---- Host controls ----

PATCHABLE_FIELDS = ('title', 'questions')


def patch_room(room_code: str, host_secret, patch: dict) -> Room:
    """Edit the title and question slots. Phase and flags only move through controls."""
    if not isinstance(patch, dict):
        raise ValidationFailed('patch must be an object')
    unknown = set(patch) - set(PATCHABLE_FIELDS)
    if unknown:
        raise ValidationFailed(f"Fields not patchable: {', '.join(sorted(unknown))}; use the room controls")
    with _atomic():
        room = load_room_as_host(room_code, host_secret)
        if 'title' in patch:
            if not isinstance(patch['title'], str):
                raise ValidationFailed('title must be a string')
            room.title = safe_trim(patch['title'], MAX_TITLE_LEN) or room.title
        edits = patch.get('questions') or []
        if not isinstance(edits, list):
            raise ValidationFailed('questions must be a list of edits')
        for edit in edits:
            if not isinstance(edit, dict) or 'index' not in edit:
                raise ValidationFailed('each question edit needs an index')
            fields = {k: v for k, v in edit.items() if k != 'index'}
            state_machine.edit_question(room, edit['index'], fields)
    current_app.logger.info(f"[patch] room={room.room_code} fields={sorted(patch)}")
    return room


def _control_advance(room, params):
    state_machine.advance(room, params.get('delta', 1))


def _control_select(room, params):
    state_machine.select_question(room, params.get('index'))


def _control_reveal(room, params):
    state_machine.reveal(room, _now())


def _control_close_answers(room, params):
    state_machine.close_answers(room)


def _control_hide(room, params):
    state_machine.hide(room)


def _control_open_final_wagers(room, params):
    state_machine.open_final_wagers(room)


def _control_open_final_answers(room, params):
    state_machine.open_final_answers(room, _now())


def _control_toggle_final_answer_key(room, params):
    state_machine.toggle_reveal_final_answer_key(room)


def _control_end(room, params):
    override = params.get('override', False)
    if not isinstance(override, bool):
        raise ValidationFailed('override must be a boolean')
    state_machine.end_game(room, ledger.final_judging_complete(room), override=override)


def _control_reveal_sudden_death(room, params):
    state_machine.reveal_sudden_death(room, _now())


def _control_close_sudden_death(room, params):
    state_machine.close_sudden_death_answers(room)


CONTROLS = {
    'advance': _control_advance,
    'select': _control_select,
    'reveal': _control_reveal,
    'close-answers': _control_close_answers,
    'hide': _control_hide,
    'open-final-wagers': _control_open_final_wagers,
    'open-final-answers': _control_open_final_answers,
    'toggle-final-answer-key': _control_toggle_final_answer_key,
    'end': _control_end,
    'sudden-death-reveal': _control_reveal_sudden_death,
    'sudden-death-close': _control_close_sudden_death,
}


def apply_control(room_code: str, host_secret, action: str, params: Optional[dict] = None) -> Room:
    handler = CONTROLS.get(action)
    if handler is None:
        raise NotFound(f'Unknown control: {action}')
    with _atomic():
        room = load_room_as_host(room_code, host_secret)
        handler(room, params or {})
    current_app.logger.info(
        f"[control] room={room.room_code} action={action} status={room.status} index={room.current_index}"
    )
    return room


def reset_scores(room_code: str, host_secret) -> Room:
    with _atomic():
        room = load_room_as_host(room_code, host_secret)
        Player.query.filter_by(room_id=room.id).update({'score': 0}, synchronize_session=False)
    current_app.logger.info(f"[reset-scores] room={room.room_code}")
    return room


def generate_game(room_code: str, host_secret, generator, reset_scores: bool = False) -> Room:
    """Fill all 10 slots from the generator and return the room to the lobby.

    On a generation failure the room is left exactly as it was.
    """
    with _atomic():
        room = load_room_as_host(room_code, host_secret)
        questions = generator.generate_game()
        state_machine.load_questions(room, questions)
        ledger.clear_room(room)
        if reset_scores:
            Player.query.filter_by(room_id=room.id).update({'score': 0}, synchronize_session=False)
    current_app.logger.info(f"[generate] room={room.room_code} reset_scores={reset_scores}")
    return room


def _avoid_list(room: Room) -> list:
    avoid = [slot['question'] for slot in room.question_slots if slot.get('question')]
    current_sd = room.sudden_death_question
    if current_sd and current_sd.get('question'):
        avoid.append(current_sd['question'])
    return avoid


def replace_question(room_code: str, host_secret, index, generator) -> Room:
    if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index <= FINAL_INDEX:
        raise ValidationFailed(f'Question index must be within 0-{FINAL_INDEX}')
    with _atomic():
        room = load_room_as_host(room_code, host_secret)
        generated = generator.generate_replacement(index, _avoid_list(room))
        slots = room.question_slots
        slots[index] = make_question(index, generated['question'], generated['answer'], generated['category'])
        room.question_slots = slots
    current_app.logger.info(f"[replace] room={room.room_code} index={index}")
    return room


def _sudden_death_question(room: Room, generator, question: Optional[dict]) -> dict:
    if question is not None:
        cleaned = validate_question(question, 1)
    else:
        cleaned = generator.generate_replacement(SUDDEN_DEATH_SLOT, _avoid_list(room))
    return {'id': 'sudden_death', **cleaned}


def start_sudden_death(room_code: str, host_secret, generator,
                       eligible_player_ids: Optional[Iterable[str]] = None,
                       question: Optional[dict] = None) -> Room:
    with _atomic():
        room = load_room_as_host(room_code, host_secret)
        players = list(room.players)
        complete = ledger.final_judging_complete(room)
        # Check before spending a generation call
        state_machine.sudden_death_candidates(room, players, complete, eligible_player_ids)
        sd_question = _sudden_death_question(room, generator, question)
        state_machine.start_sudden_death(room, players, complete, sd_question, eligible_player_ids)
    current_app.logger.info(f"[sudden-death] room={room.room_code} eligible={room.eligible_player_ids}")
    return room


def replace_sudden_death_question(room_code: str, host_secret, generator, question: Optional[dict] = None) -> Room:
    with _atomic():
        room = load_room_as_host(room_code, host_secret)
        state_machine.ensure_sudden_death_replaceable(room)
        sd_question = _sudden_death_question(room, generator, question)
        state_machine.replace_sudden_death_question(room, sd_question)
        ledger.clear_sudden_death_entries(room)
    current_app.logger.info(f"[sudden-death-replace] room={room.room_code}")
    return room


def auto_close_answers(room_id: int, scope: str, expected_revealed_at: float) -> Optional[Room]:
    """Close the answer window opened at ``expected_revealed_at``, if it is still that window.

    Called by the answer timer rather than the host, so there is no secret
    check. Returns the room when something was closed.
    """
    with _atomic():
        room = db.session.get(Room, room_id)
        if room is None:
            return None
        if scope == 'sudden_death':
            if not room.sd_accepting_answers or room.sd_revealed_at != expected_revealed_at:
                return None
            state_machine.close_sudden_death_answers(room)
        else:
            if not room.accepting_answers or room.revealed_at != expected_revealed_at:
                return None
            state_machine.close_answers(room)
    current_app.logger.info(f"[auto-close] room={room.room_code} scope={scope}")
    return room


# ---- Judging ----

def _require_bool(correct) -> bool:
    if not isinstance(correct, bool):
        raise ValidationFailed('correct must be true or false')
    return correct


def judge_submission(room_code: str, host_secret, submission_id: str, correct) -> JudgeOutcome:
    correct = _require_bool(correct)
    with _atomic():
        room = load_room_as_host(room_code, host_secret)
        submission = Submission.query.filter_by(room_id=room.id, key=submission_id).first()
        if submission is None:
            raise NotFound('Submission not found')
        sudden = submission.question_index == SUDDEN_DEATH_INDEX
        if not sudden and room.status == state_machine.ENDED:
            raise InvalidTransition('The game has ended; only sudden death can be judged')
        if submission.judged is not None:
            return JudgeOutcome(False, submission.points_delta, 'already_judged', submission.to_dict())

        delta = judge_sudden_death(correct) if sudden else judge_standard(correct)
        claimed = Submission.query.filter(
            Submission.id == submission.id, Submission.judged.is_(None)
        ).update({'judged': correct, 'points_delta': delta}, synchronize_session=False)
        if not claimed:
            db.session.refresh(submission)
            return JudgeOutcome(False, submission.points_delta, 'already_judged', submission.to_dict())

        if sudden and correct:
            won = Room.query.filter(Room.id == room.id, Room.sd_winner_id.is_(None)).update(
                {'sd_winner_id': submission.player_id, 'sd_accepting_answers': False},
                synchronize_session=False,
            )
            if not won:
                # Someone already won this round; leave this answer unjudged
                db.session.rollback()
                return JudgeOutcome(False, 0, 'winner_already_decided', submission.to_dict())

        if delta:
            Player.query.filter_by(room_id=room.id, player_id=submission.player_id).update(
                {Player.score: Player.score + delta}, synchronize_session=False
            )
    db.session.refresh(submission)
    current_app.logger.info(
        f"[judge] room={room.room_code} submission={submission_id} correct={correct} delta={delta}"
    )
    return JudgeOutcome(True, delta, None, submission.to_dict())


def judge_final(room_code: str, host_secret, player_id, correct) -> JudgeOutcome:
    correct = _require_bool(correct)
    player_id = _clean_player_id(player_id)
    with _atomic():
        room = load_room_as_host(room_code, host_secret)
        if room.status == state_machine.ENDED:
            raise InvalidTransition('The game has ended; only sudden death can be judged')
        answer = FinalAnswer.query.filter_by(room_id=room.id, player_id=player_id).first()
        if answer is None:
            raise NotFound('Final answer not found')
        if answer.judged is not None:
            return JudgeOutcome(False, answer.points_delta, 'already_judged', answer.to_dict())

        claimed = FinalAnswer.query.filter(
            FinalAnswer.id == answer.id, FinalAnswer.judged.is_(None)
        ).update({'judged': correct}, synchronize_session=False)
        if not claimed:
            db.session.refresh(answer)
            return JudgeOutcome(False, answer.points_delta, 'already_judged', answer.to_dict())

        # Score as of now, inside the transaction that holds the claim
        wager = Wager.query.filter_by(room_id=room.id, player_id=player_id).first()
        declared = wager.wager if wager else 0
        score = (
            db.session.query(Player.score)
            .filter_by(room_id=room.id, player_id=player_id)
            .with_for_update()
            .scalar()
        )
        delta = score_final(correct, declared, score or 0)
        FinalAnswer.query.filter_by(id=answer.id).update({'points_delta': delta}, synchronize_session=False)
        if score is not None and delta:
            Player.query.filter_by(room_id=room.id, player_id=player_id).update(
                {Player.score: Player.score + delta}, synchronize_session=False
            )
    db.session.refresh(answer)
    current_app.logger.info(
        f"[judge-final] room={room.room_code} player={player_id} correct={correct} wager={declared} delta={delta}"
    )
    return JudgeOutcome(True, delta, None, answer.to_dict())


# ---- Reads ----

def room_snapshot(room_code: str, host_secret=None) -> dict:
    room = get_room(room_code)
    if host_secret:
        authorize_host(room, host_secret)
    return room.to_dict(include_answers=bool(host_secret))


def list_submissions(room_code: str, host_secret, question_index: Optional[int] = None) -> list:
    room = load_room_as_host(room_code, host_secret)
    index = room.current_index if question_index is None else question_index
    return ledger.submissions_view(room, index).to_list()


def list_wagers(room_code: str, host_secret) -> list:
    room = load_room_as_host(room_code, host_secret)
    return ledger.wagers_view(room).to_list()


def list_final_answers(room_code: str, host_secret) -> list:
    room = load_room_as_host(room_code, host_secret)
    return ledger.final_answers_view(room).to_list()
