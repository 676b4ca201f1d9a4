def _events(sio_client, name):
    return [pkt['args'][0] for pkt in sio_client.get_received('/ws') if pkt['name'] == name]


def test_socket_connect(sio_client):
    assert sio_client.is_connected('/ws')
    received = sio_client.get_received('/ws')
    assert any(pkt['name'] == 'connected' for pkt in received)


def test_join_room_sends_current_snapshot(sio_client, room):
    code, _ = room
    sio_client.get_received('/ws')  # flush
    sio_client.emit('join_room', {'room_id': code.lower()}, namespace='/ws')
    received = sio_client.get_received('/ws')
    names = [pkt['name'] for pkt in received]
    assert names == ['joined', 'room_state']
    assert received[0]['args'][0] == {'room': f'room:{code}'}
    snapshot = received[1]['args'][0]
    assert snapshot['room_id'] == code
    assert 'host_secret' not in snapshot
    assert 'questions' not in snapshot


def test_join_room_errors(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('join_room', {}, namespace='/ws')
    assert _events(sio_client, 'error') == [{'message': 'room_id is required'}]
    sio_client.emit('join_room', {'room_id': 'NOPE22'}, namespace='/ws')
    assert _events(sio_client, 'error') == [{'message': 'Room not found'}]


def test_mutations_publish_state_updates(sio_client, client, room):
    code, headers = room
    client.patch(
        f'/api/rooms/{code}',
        json={'questions': [{'index': 0, 'question': 'Capital of Peru?', 'answer': 'Lima'}]},
        headers=headers,
    )
    sio_client.emit('join_room', {'room_id': code}, namespace='/ws')
    sio_client.get_received('/ws')

    client.post(f'/api/rooms/{code}/join', json={'player_id': 'p1', 'name': 'Alice'})
    updates = _events(sio_client, 'state_update')
    assert len(updates) == 1
    assert [p['name'] for p in updates[0]['players']] == ['Alice']

    client.post(f'/api/rooms/{code}/control/reveal', json={}, headers=headers)
    update = _events(sio_client, 'state_update')[-1]
    assert update['revealed'] is True
    assert update['current_question'] == {'question': 'Capital of Peru?', 'category': ''}
    assert 'host_secret' not in update


def test_rejected_control_publishes_nothing(sio_client, client, room):
    code, _ = room
    sio_client.emit('join_room', {'room_id': code}, namespace='/ws')
    sio_client.get_received('/ws')
    client.post(f'/api/rooms/{code}/control/reveal', json={}, headers={'X-Host-Secret': 'wrong'})
    assert _events(sio_client, 'state_update') == []


def test_leave_room_stops_updates(sio_client, client, room):
    code, headers = room
    sio_client.emit('join_room', {'room_id': code}, namespace='/ws')
    sio_client.emit('leave_room', {'room_id': code}, namespace='/ws')
    assert _events(sio_client, 'left') == [{'room': f'room:{code}'}]
    client.post(f'/api/rooms/{code}/control/reveal', json={}, headers=headers)
    assert _events(sio_client, 'state_update') == []


def test_ping(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('ping', {'t': 1}, namespace='/ws')
    assert _events(sio_client, 'pong') == [{'t': 1}]
