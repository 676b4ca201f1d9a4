import pytest

from trivia_live.errors import InvalidTransition, ValidationFailed
from trivia_live.models import Player, Room
from trivia_live.services.trivia import state_machine as sm


def make_room():
    return Room(room_code='ABCDEF', host_secret='secret')


def make_players(**scores):
    return [Player(player_id=pid, name=pid, score=score) for pid, score in scores.items()]


def test_new_room_defaults():
    room = make_room()
    assert room.status == sm.LOBBY
    assert room.current_index == 0
    assert len(room.question_slots) == 10
    assert room.sudden_death_state() is None


def test_reveal_opens_the_answer_window():
    room = make_room()
    sm.reveal(room, 123.0)
    assert room.status == sm.QUESTION
    assert room.revealed is True
    assert room.accepting_answers is True
    assert room.revealed_at == 123.0


def test_advance_hides_the_next_question():
    room = make_room()
    sm.reveal(room, 1.0)
    sm.advance(room, 1)
    assert room.current_index == 1
    assert room.revealed is False
    assert room.accepting_answers is False
    sm.advance(room, -1)
    assert room.current_index == 0


def test_advance_bounds():
    room = make_room()
    with pytest.raises(InvalidTransition):
        sm.advance(room, -1)
    sm.select_question(room, 9)
    with pytest.raises(InvalidTransition):
        sm.advance(room, 1)
    with pytest.raises(ValidationFailed):
        sm.advance(room, True)


def test_reveal_not_allowed_on_final_question():
    room = make_room()
    sm.select_question(room, 9)
    with pytest.raises(InvalidTransition):
        sm.reveal(room, 1.0)


def test_close_and_hide_are_idempotent():
    room = make_room()
    sm.reveal(room, 1.0)
    sm.close_answers(room)
    sm.close_answers(room)
    assert room.revealed is True
    assert room.accepting_answers is False
    sm.hide(room)
    sm.hide(room)
    assert room.revealed is False


def test_final_round_sequence():
    room = make_room()
    sm.select_question(room, 9)
    sm.open_final_wagers(room)
    assert room.status == sm.FINAL_WAGER
    assert room.final_state() == {'wagers_open': True, 'answers_open': False, 'revealed_answer': False}
    sm.open_final_answers(room, 50.0)
    assert room.status == sm.FINAL_ANSWER
    assert room.accepting_answers is True
    assert room.revealed_at == 50.0
    assert room.final_state() == {'wagers_open': False, 'answers_open': True, 'revealed_answer': False}
    sm.toggle_reveal_final_answer_key(room)
    assert room.final_revealed_answer is True


def test_final_answers_need_wagers_first():
    room = make_room()
    sm.select_question(room, 9)
    with pytest.raises(InvalidTransition):
        sm.open_final_answers(room, 1.0)


def test_end_game():
    room = make_room()
    with pytest.raises(InvalidTransition):
        sm.end_game(room, final_judging_complete=False)
    sm.end_game(room, final_judging_complete=False, override=True)
    assert room.status == sm.ENDED
    sm.end_game(room, final_judging_complete=False)
    with pytest.raises(InvalidTransition):
        sm.select_question(room, 2)


def test_tied_leaders():
    players = make_players(a=7, b=7, c=3)
    assert [p.player_id for p in sm.tied_leaders(players)] == ['a', 'b']
    assert sm.tied_leaders([]) == []


def test_start_sudden_death_freezes_eligibility():
    room = make_room()
    players = make_players(a=7, b=7, c=3)
    question = {'id': 'sudden_death', 'question': 'Q?', 'answer': 'A', 'category': 'C'}
    sm.start_sudden_death(room, players, True, question)
    assert room.sd_active is True
    assert room.eligible_player_ids == ['a', 'b']
    players[2].score = 9
    assert room.eligible_player_ids == ['a', 'b']
    with pytest.raises(InvalidTransition):
        sm.start_sudden_death(room, players, True, question)


def test_sudden_death_preconditions():
    room = make_room()
    question = {'question': 'Q?', 'answer': 'A', 'category': 'C'}
    with pytest.raises(InvalidTransition):
        sm.start_sudden_death(room, make_players(a=7, b=7), False, question)
    with pytest.raises(InvalidTransition):
        sm.start_sudden_death(room, make_players(a=8, b=7), True, question)
    with pytest.raises(ValidationFailed):
        sm.start_sudden_death(room, make_players(a=7, b=7, c=7), True, question, eligible_player_ids=['a', 'b'])
    assert room.sd_active is False


def test_sudden_death_reveal_and_replace():
    room = make_room()
    with pytest.raises(InvalidTransition):
        sm.reveal_sudden_death(room, 1.0)
    sm.start_sudden_death(room, make_players(a=1, b=1), True, {'question': 'Q1?', 'answer': 'A', 'category': 'C'})
    sm.reveal_sudden_death(room, 5.0)
    assert room.sd_accepting_answers is True
    with pytest.raises(InvalidTransition):
        sm.replace_sudden_death_question(room, {'question': 'Q2?', 'answer': 'B', 'category': 'C'})
    sm.close_sudden_death_answers(room)
    sm.replace_sudden_death_question(room, {'question': 'Q2?', 'answer': 'B', 'category': 'C'})
    assert room.sudden_death_question['question'] == 'Q2?'
    assert room.sd_revealed is False
    room.sd_winner_id = 'a'
    with pytest.raises(InvalidTransition):
        sm.reveal_sudden_death(room, 6.0)


def test_load_questions_starts_a_new_game():
    room = make_room()
    sm.select_question(room, 9)
    sm.open_final_wagers(room)
    sm.start_sudden_death(room, make_players(a=1, b=1), True, {'question': 'Q?', 'answer': 'A', 'category': 'C'})
    questions = [{'question': f'Q{i}', 'answer': f'A{i}', 'category': 'Cat'} for i in range(10)]
    sm.load_questions(room, questions)
    assert room.status == sm.LOBBY
    assert room.current_index == 0
    assert room.final_state() == {'wagers_open': False, 'answers_open': False, 'revealed_answer': False}
    assert room.sd_active is False
    assert room.question_slots[4] == {'id': '5', 'question': 'Q4', 'answer': 'A4', 'category': 'Cat'}
    with pytest.raises(ValidationFailed):
        sm.load_questions(room, questions[:9])


def test_edit_question():
    room = make_room()
    sm.edit_question(room, 1, {'answer': '  Paris '})
    assert room.question_slots[1] == {'id': '2', 'question': '', 'answer': 'Paris', 'category': ''}
    with pytest.raises(ValidationFailed):
        sm.edit_question(room, 10, {'answer': 'x'})
    with pytest.raises(ValidationFailed):
        sm.edit_question(room, 1, {'id': '7'})
    with pytest.raises(ValidationFailed):
        sm.edit_question(room, 1, {'answer': 3})


def test_public_view_of_final_question():
    room = make_room()
    sm.edit_question(room, 9, {'question': 'Hard?', 'answer': 'Yes', 'category': 'Final'})
    sm.select_question(room, 9)
    sm.open_final_wagers(room)
    room.players = []
    # Only the category is shown while wagers are open
    assert room.to_dict()['current_question'] == {'category': 'Final'}
    sm.toggle_reveal_final_answer_key(room)
    assert room.to_dict()['current_question'] == {'category': 'Final'}
    assert room.to_dict(include_answers=True)['current_question']['question'] == 'Hard?'

    sm.open_final_answers(room, 1.0)
    assert room.to_dict()['current_question'] == {'question': 'Hard?', 'category': 'Final', 'answer': 'Yes'}
    sm.toggle_reveal_final_answer_key(room)
    assert room.to_dict()['current_question'] == {'question': 'Hard?', 'category': 'Final'}
    sm.end_game(room, final_judging_complete=False, override=True)
    assert room.to_dict()['current_question']['question'] == 'Hard?'
