"""Room lifecycle: lobby -> question -> final_wager -> final_answer -> ended.

Each transition mutates a ``Room`` in place or raises ``InvalidTransition``.
Nothing here touches the session; the coordinator loads the room, applies a
transition and commits. Sudden death is a nested excursion that never
changes ``room.status``.
"""
from typing import Iterable, Optional

from trivia_live.errors import InvalidTransition, ValidationFailed
from trivia_live.models import FINAL_INDEX, QUESTION_COUNT, make_question, safe_trim

LOBBY = 'lobby'
QUESTION = 'question'
FINAL_WAGER = 'final_wager'
FINAL_ANSWER = 'final_answer'
ENDED = 'ended'

QUESTION_FIELDS = ('question', 'answer', 'category')


def _require_in_play(room, action: str) -> None:
    if room.status == ENDED:
        raise InvalidTransition(f'Cannot {action}: the game has ended')


def _require_sudden_death(room) -> None:
    if not room.sd_active:
        raise InvalidTransition('No sudden death round is running')


def _select(room, index: int) -> None:
    # A newly selected question always starts hidden
    room.current_index = index
    room.revealed = False
    room.accepting_answers = False


def advance(room, delta: int) -> None:
    if isinstance(delta, bool) or delta not in (-1, 1):
        raise ValidationFailed('delta must be +1 or -1')
    _require_in_play(room, 'change question')
    target = room.current_index + delta
    if not 0 <= target <= FINAL_INDEX:
        raise InvalidTransition(f'Question index must stay within 0-{FINAL_INDEX}')
    _select(room, target)


def select_question(room, index: int) -> None:
    if isinstance(index, bool) or not isinstance(index, int):
        raise ValidationFailed('index must be an integer')
    if not 0 <= index <= FINAL_INDEX:
        raise InvalidTransition(f'Question index must stay within 0-{FINAL_INDEX}')
    _require_in_play(room, 'change question')
    _select(room, index)


def reveal(room, now: float) -> None:
    _require_in_play(room, 'reveal')
    if room.current_index >= FINAL_INDEX:
        raise InvalidTransition('Final Jeopardy opens with open_final_wagers, not reveal')
    room.status = QUESTION
    room.revealed = True
    room.accepting_answers = True
    room.revealed_at = now


def close_answers(room) -> None:
    room.accepting_answers = False


def hide(room) -> None:
    room.revealed = False
    room.accepting_answers = False


def open_final_wagers(room) -> None:
    _require_in_play(room, 'open final wagers')
    if room.current_index != FINAL_INDEX:
        raise InvalidTransition('Final wagers open only on the final question')
    room.status = FINAL_WAGER
    room.revealed = True
    room.accepting_answers = False
    room.final_wagers_open = True
    room.final_answers_open = False
    room.final_revealed_answer = False


def open_final_answers(room, now: float) -> None:
    _require_in_play(room, 'open final answers')
    if room.current_index != FINAL_INDEX or room.status not in (FINAL_WAGER, FINAL_ANSWER):
        raise InvalidTransition('Final answers open only after final wagers')
    room.status = FINAL_ANSWER
    room.revealed = True
    room.accepting_answers = True
    room.revealed_at = now
    room.final_wagers_open = False
    room.final_answers_open = True


def toggle_reveal_final_answer_key(room) -> None:
    room.final_revealed_answer = not room.final_revealed_answer


def end_game(room, final_judging_complete: bool, override: bool = False) -> None:
    if room.status == ENDED:
        return
    if not (final_judging_complete or override):
        raise InvalidTransition('Judge every final answer before ending, or override')
    room.status = ENDED
    room.accepting_answers = False
    room.final_wagers_open = False
    room.final_answers_open = False


def tied_leaders(players: Iterable) -> list:
    """Players sharing the highest score, in the order given."""
    players = list(players)
    if not players:
        return []
    top = max(p.score or 0 for p in players)
    return [p for p in players if (p.score or 0) == top]


def sudden_death_candidates(room, players: Iterable, final_judging_complete: bool,
                            eligible_player_ids: Optional[Iterable[str]] = None) -> list:
    """Ids of the players a tiebreaker would be between, or raise if none may start."""
    if room.sd_active:
        raise InvalidTransition('A sudden death round is already running')
    if not final_judging_complete:
        raise InvalidTransition('Sudden death starts only after every final answer is judged')
    leaders = tied_leaders(players)
    if len(leaders) < 2:
        raise InvalidTransition('Sudden death needs two or more players tied for first')
    leader_ids = [p.player_id for p in leaders]
    if eligible_player_ids is not None and set(eligible_player_ids) != set(leader_ids):
        raise ValidationFailed('Eligible players must be exactly the players tied for first')
    return leader_ids


def start_sudden_death(room, players: Iterable, final_judging_complete: bool, question: dict,
                       eligible_player_ids: Optional[Iterable[str]] = None) -> None:
    # Eligibility is frozen here; later score changes do not alter it
    leader_ids = sudden_death_candidates(room, players, final_judging_complete, eligible_player_ids)
    room.sd_active = True
    room.sudden_death_question = question
    room.eligible_player_ids = leader_ids
    room.sd_revealed = False
    room.sd_accepting_answers = False
    room.sd_revealed_at = None
    room.sd_winner_id = None


def reveal_sudden_death(room, now: float) -> None:
    _require_sudden_death(room)
    if room.sd_winner_id:
        raise InvalidTransition('Sudden death already has a winner')
    room.sd_revealed = True
    room.sd_accepting_answers = True
    room.sd_revealed_at = now


def close_sudden_death_answers(room) -> None:
    _require_sudden_death(room)
    room.sd_accepting_answers = False


def ensure_sudden_death_replaceable(room) -> None:
    _require_sudden_death(room)
    if room.sd_winner_id:
        raise InvalidTransition('Sudden death already has a winner')
    if room.sd_accepting_answers:
        raise InvalidTransition('Close sudden death answers before replacing the question')


def replace_sudden_death_question(room, question: dict) -> None:
    ensure_sudden_death_replaceable(room)
    room.sudden_death_question = question
    room.sd_revealed = False


def clear_sudden_death(room) -> None:
    room.sd_active = False
    room.sd_question = None
    room.sd_eligible_player_ids = None
    room.sd_revealed = False
    room.sd_accepting_answers = False
    room.sd_revealed_at = None
    room.sd_winner_id = None


def load_questions(room, questions: list) -> None:
    """Start a new game on this room with a fresh set of questions."""
    if len(questions) != QUESTION_COUNT:
        raise ValidationFailed(f'A game needs exactly {QUESTION_COUNT} questions')
    room.question_slots = [
        make_question(i, q.get('question'), q.get('answer'), q.get('category'))
        for i, q in enumerate(questions)
    ]
    room.status = LOBBY
    room.current_index = 0
    room.revealed = False
    room.accepting_answers = False
    room.revealed_at = None
    room.final_wagers_open = False
    room.final_answers_open = False
    room.final_revealed_answer = False
    clear_sudden_death(room)


def edit_question(room, index, fields: dict) -> None:
    if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index <= FINAL_INDEX:
        raise ValidationFailed(f'Question index must be within 0-{FINAL_INDEX}')
    unknown = set(fields) - set(QUESTION_FIELDS)
    if unknown:
        raise ValidationFailed(f"Unknown question field(s): {', '.join(sorted(unknown))}")
    slots = room.question_slots
    slot = dict(slots[index])
    for name, value in fields.items():
        if not isinstance(value, str):
            raise ValidationFailed(f'{name} must be a string')
        slot[name] = safe_trim(value)
    slots[index] = slot
    room.question_slots = slots
