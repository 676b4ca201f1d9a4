from flask_socketio import join_room, leave_room, emit
from trivia_live.broadcast import NAMESPACE, room_channel
from trivia_live.models import Room


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_join_room(data):
    room_code = (data or {}).get('room_id')
    if not room_code:
        emit('error', {'message': 'room_id is required'})
        return
    room = Room.query.filter_by(room_code=room_code.upper()).first()
    if not room:
        emit('error', {'message': 'Room not found'})
        return
    channel = room_channel(room_code)
    join_room(channel)
    emit('joined', {'room': channel})
    # Subscribers get the current value first, then every change
    emit('room_state', room.to_dict())


def handle_leave_room(data):
    room_code = (data or {}).get('room_id')
    if not room_code:
        emit('error', {'message': 'room_id is required'})
        return
    channel = room_channel(room_code)
    leave_room(channel)
    emit('left', {'room': channel})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    from trivia_live import socketio

    socketio.on_event('connect', handle_connect, namespace=NAMESPACE)
    socketio.on_event('join_room', handle_join_room, namespace=NAMESPACE)
    socketio.on_event('leave_room', handle_leave_room, namespace=NAMESPACE)
    socketio.on_event('ping', handle_ping, namespace=NAMESPACE)

    if testing:
        # Test-only mirror on default namespace
        socketio.on_event('connect', handle_connect, namespace='/')
        socketio.on_event('join_room', handle_join_room, namespace='/')
        socketio.on_event('leave_room', handle_leave_room, namespace='/')
        socketio.on_event('ping', handle_ping, namespace='/')
