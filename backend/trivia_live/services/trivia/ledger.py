"""Per-room answers, wagers and final answers.

Rows are upserted by the players that own them and become immutable once the
host judges them. Writes here are flushed but never committed; the
coordinator owns the transaction boundary.
"""
import math

from flask import current_app

from trivia_live import db
from trivia_live.errors import Conflict, ValidationFailed
from trivia_live.models import (
    FinalAnswer,
    SUDDEN_DEATH_INDEX,
    Submission,
    Wager,
    safe_trim,
    submission_key,
)
from .state_machine import FINAL_ANSWER, FINAL_WAGER, QUESTION

# Postgres INTEGER upper bound
MAX_DECLARED_WAGER = 2_147_483_647


class LedgerView:
    """Creation-ordered projection over one ledger table.

    Each iteration re-runs the query, so a view can be walked any number of
    times and always reflects the committed state. Reading never mutates.
    """

    def __init__(self, model, **filters):
        self._model = model
        self._filters = filters

    def _query(self):
        return self._model.query.filter_by(**self._filters)

    def __iter__(self):
        ordered = self._query().order_by(self._model.created_at, self._model.id)
        return iter(ordered.all())

    def __len__(self):
        return self._query().count()

    def to_list(self):
        return [row.to_dict() for row in self]


def submissions_view(room, question_index: int) -> LedgerView:
    return LedgerView(Submission, room_id=room.id, question_index=question_index)


def wagers_view(room) -> LedgerView:
    return LedgerView(Wager, room_id=room.id)


def final_answers_view(room) -> LedgerView:
    return LedgerView(FinalAnswer, room_id=room.id)


def final_judging_complete(room) -> bool:
    """At least one final answer exists and none is awaiting a judgment."""
    answers = FinalAnswer.query.filter_by(room_id=room.id)
    if answers.count() == 0:
        return False
    return answers.filter(FinalAnswer.judged.is_(None)).count() == 0


def _check_window(revealed_at, now: float) -> None:
    cfg = current_app.config
    if not cfg.get('ENFORCE_ANSWER_WINDOW'):
        return
    window = int(cfg.get('ANSWER_WINDOW_SEC', 30))
    if revealed_at is not None and now - revealed_at > window:
        raise Conflict('The answer window has closed')


def _clean_answer(text) -> str:
    if text is not None and not isinstance(text, str):
        raise ValidationFailed('answer must be a string')
    return safe_trim(text, int(current_app.config.get('MAX_ANSWER_LEN', 280)))


def upsert_answer(room, player, question_index: int, text, now: float) -> Submission:
    if question_index == SUDDEN_DEATH_INDEX:
        if not room.sd_active or not room.sd_accepting_answers:
            raise Conflict('Not accepting sudden death answers at this time')
        if player.player_id not in room.eligible_player_ids:
            raise ValidationFailed('Only players tied for first may answer in sudden death')
        _check_window(room.sd_revealed_at, now)
    else:
        if room.status != QUESTION or not room.accepting_answers:
            raise Conflict('Not accepting answers at this time')
        if question_index != room.current_index:
            raise Conflict(f'Answers are open for question {room.current_index + 1} only')
        _check_window(room.revealed_at, now)
    answer = _clean_answer(text)

    existing = Submission.query.filter_by(
        room_id=room.id, question_index=question_index, player_id=player.player_id
    ).first()
    if existing is None:
        submission = Submission(
            room_id=room.id,
            key=submission_key(question_index, player.player_id),
            player_id=player.player_id,
            player_name=player.name,
            question_index=question_index,
            answer=answer,
            judged=None,
            points_delta=0,
        )
        db.session.add(submission)
        db.session.flush()
        return submission

    # Conditional write so an answer can never be edited under a judgment
    updated = Submission.query.filter(
        Submission.id == existing.id, Submission.judged.is_(None)
    ).update({'answer': answer, 'player_name': player.name}, synchronize_session=False)
    if updated == 0:
        raise Conflict('This answer has already been judged')
    db.session.refresh(existing)
    return existing


def parse_wager(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        raise ValidationFailed('wager must be a number')
    if isinstance(amount, float) and not math.isfinite(amount):
        raise ValidationFailed('wager must be a finite number')
    declared = math.floor(amount)
    if declared < 0:
        raise ValidationFailed('wager cannot be negative')
    if declared > MAX_DECLARED_WAGER:
        raise ValidationFailed('wager is out of range')
    return declared


def upsert_wager(room, player, amount) -> Wager:
    if room.status != FINAL_WAGER or not room.final_wagers_open:
        raise Conflict('Wagers are closed')
    # Stored unclamped; the score bound is applied when the final is judged
    declared = parse_wager(amount)
    wager = Wager.query.filter_by(room_id=room.id, player_id=player.player_id).first()
    if wager is None:
        wager = Wager(room_id=room.id, player_id=player.player_id, player_name=player.name, wager=declared)
        db.session.add(wager)
    else:
        wager.wager = declared
        wager.player_name = player.name
    db.session.flush()
    return wager


def upsert_final_answer(room, player, text, now: float) -> FinalAnswer:
    if room.status != FINAL_ANSWER or not room.final_answers_open or not room.accepting_answers:
        raise Conflict('Final answers are closed')
    _check_window(room.revealed_at, now)
    answer = _clean_answer(text)

    existing = FinalAnswer.query.filter_by(room_id=room.id, player_id=player.player_id).first()
    if existing is None:
        final_answer = FinalAnswer(
            room_id=room.id,
            player_id=player.player_id,
            player_name=player.name,
            answer=answer,
            judged=None,
            points_delta=0,
        )
        db.session.add(final_answer)
        db.session.flush()
        return final_answer

    updated = FinalAnswer.query.filter(
        FinalAnswer.id == existing.id, FinalAnswer.judged.is_(None)
    ).update({'answer': answer, 'player_name': player.name}, synchronize_session=False)
    if updated == 0:
        raise Conflict('This final answer has already been judged')
    db.session.refresh(existing)
    return existing


def delete_player_entries(room, player_id: str) -> None:
    for model in (Submission, Wager, FinalAnswer):
        model.query.filter_by(room_id=room.id, player_id=player_id).delete(synchronize_session=False)


def clear_room(room) -> None:
    for model in (Submission, Wager, FinalAnswer):
        model.query.filter_by(room_id=room.id).delete(synchronize_session=False)


def clear_sudden_death_entries(room) -> None:
    # Answers belong to the tiebreaker question they were given for
    Submission.query.filter_by(room_id=room.id, question_index=SUDDEN_DEATH_INDEX).delete(
        synchronize_session=False
    )
