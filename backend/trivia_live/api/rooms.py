from flask import Blueprint, jsonify, request, current_app, session
from trivia_live.broadcast import publish_room_update
from trivia_live.errors import ValidationFailed
from trivia_live.services.trivia import coordinator
from trivia_live.services.trivia.generation import get_generator
from trivia_live.services.trivia.identity import ensure_local_player_id, player_namespace
from trivia_live.services.trivia.scheduler import schedule_answer_close


rooms = Blueprint('rooms', __name__)

# Controls that open an answer window, and which window they open
_WINDOW_CONTROLS = {
    'reveal': 'main',
    'open-final-answers': 'main',
    'sudden-death-reveal': 'sudden_death',
}


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationFailed('Request body must be a JSON object')
    return data


def _host_secret(data: dict):
    return request.headers.get('X-Host-Secret') or data.get('host_secret') or request.args.get('host')


def _with_durations(payload: dict) -> dict:
    # Clients render the countdown from revealed_at + this window
    payload['durations'] = {'answer_window': int(current_app.config.get('ANSWER_WINDOW_SEC', 30))}
    return payload


def _host_response(room):
    publish_room_update(room)
    return jsonify(_with_durations(room.to_dict(include_answers=True)))


@rooms.route('/create', methods=['POST'])
def create_room():
    data = _json_body()
    room, host_secret = coordinator.create_room(data.get('title'))
    return jsonify({
        'message': 'New room created!',
        'room_id': room.room_code,
        'host_secret': host_secret,
        'room': _with_durations(room.to_dict(include_answers=True)),
    }), 201


@rooms.route('/<string:room_code>/state', methods=['GET'])
def get_room_state(room_code):
    return jsonify(_with_durations(coordinator.room_snapshot(room_code, _host_secret({}))))


@rooms.route('/<string:room_code>/join', methods=['POST'])
def join_room(room_code):
    data = _json_body()
    player_id = data.get('player_id') or ensure_local_player_id(player_namespace(room_code), session)
    player = coordinator.join_as_player(room_code, player_id, data.get('name'))
    publish_room_update(player.room)
    return jsonify(player.to_dict()), 201


@rooms.route('/<string:room_code>/leave', methods=['POST'])
def leave_room(room_code):
    data = _json_body()
    room = coordinator.remove_player(room_code, data.get('player_id'))
    publish_room_update(room)
    return jsonify({'message': 'Player removed'})


@rooms.route('/<string:room_code>/answers', methods=['POST'])
def submit_answer(room_code):
    data = _json_body()
    submission = coordinator.submit_answer(
        room_code, data.get('player_id'), data.get('answer'), data.get('question_index')
    )
    return jsonify(submission.to_dict()), 201


@rooms.route('/<string:room_code>/sudden-death/answer', methods=['POST'])
def submit_sudden_death_answer(room_code):
    data = _json_body()
    submission = coordinator.submit_sudden_death_answer(room_code, data.get('player_id'), data.get('answer'))
    return jsonify(submission.to_dict()), 201


@rooms.route('/<string:room_code>/wager', methods=['POST'])
def submit_wager(room_code):
    data = _json_body()
    wager = coordinator.submit_wager(room_code, data.get('player_id'), data.get('wager'))
    return jsonify(wager.to_dict()), 201


@rooms.route('/<string:room_code>/final-answer', methods=['POST'])
def submit_final_answer(room_code):
    data = _json_body()
    final_answer = coordinator.submit_final_answer(room_code, data.get('player_id'), data.get('answer'))
    return jsonify(final_answer.to_dict()), 201


@rooms.route('/<string:room_code>', methods=['PATCH'])
def patch_room(room_code):
    data = _json_body()
    patch = {k: v for k, v in data.items() if k != 'host_secret'}
    room = coordinator.patch_room(room_code, _host_secret(data), patch)
    return _host_response(room)


@rooms.route('/<string:room_code>/control/<string:action>', methods=['POST'])
def control(room_code, action):
    data = _json_body()
    room = coordinator.apply_control(room_code, _host_secret(data), action, data)
    scope = _WINDOW_CONTROLS.get(action)
    if scope:
        schedule_answer_close(current_app._get_current_object(), room.id, scope)
    return _host_response(room)


@rooms.route('/<string:room_code>/control/reset-scores', methods=['POST'])
def reset_scores(room_code):
    data = _json_body()
    room = coordinator.reset_scores(room_code, _host_secret(data))
    return _host_response(room)


@rooms.route('/<string:room_code>/control/sudden-death-start', methods=['POST'])
def start_sudden_death(room_code):
    data = _json_body()
    room = coordinator.start_sudden_death(
        room_code,
        _host_secret(data),
        get_generator(current_app),
        eligible_player_ids=data.get('eligible_player_ids'),
        question=data.get('question'),
    )
    return _host_response(room)


@rooms.route('/<string:room_code>/control/sudden-death-replace', methods=['POST'])
def replace_sudden_death_question(room_code):
    data = _json_body()
    room = coordinator.replace_sudden_death_question(
        room_code, _host_secret(data), get_generator(current_app), question=data.get('question')
    )
    return _host_response(room)


@rooms.route('/<string:room_code>/generate', methods=['POST'])
def generate_game(room_code):
    data = _json_body()
    room = coordinator.generate_game(
        room_code, _host_secret(data), get_generator(current_app), reset_scores=bool(data.get('reset_scores'))
    )
    return _host_response(room)


@rooms.route('/<string:room_code>/questions/<int:index>/replace', methods=['POST'])
def replace_question(room_code, index):
    data = _json_body()
    room = coordinator.replace_question(room_code, _host_secret(data), index, get_generator(current_app))
    return _host_response(room)


@rooms.route('/<string:room_code>/judge', methods=['POST'])
def judge_submission(room_code):
    data = _json_body()
    outcome = coordinator.judge_submission(
        room_code, _host_secret(data), data.get('submission_id'), data.get('correct')
    )
    if outcome.applied:
        publish_room_update(coordinator.get_room(room_code))
    return jsonify(outcome.to_dict())


@rooms.route('/<string:room_code>/judge-final', methods=['POST'])
def judge_final(room_code):
    data = _json_body()
    outcome = coordinator.judge_final(room_code, _host_secret(data), data.get('player_id'), data.get('correct'))
    if outcome.applied:
        publish_room_update(coordinator.get_room(room_code))
    return jsonify(outcome.to_dict())


@rooms.route('/<string:room_code>/submissions', methods=['GET'])
def list_submissions(room_code):
    index = request.args.get('index', type=int)
    return jsonify(coordinator.list_submissions(room_code, _host_secret({}), index))


@rooms.route('/<string:room_code>/wagers', methods=['GET'])
def list_wagers(room_code):
    return jsonify(coordinator.list_wagers(room_code, _host_secret({})))


@rooms.route('/<string:room_code>/final-answers', methods=['GET'])
def list_final_answers(room_code):
    return jsonify(coordinator.list_final_answers(room_code, _host_secret({})))
