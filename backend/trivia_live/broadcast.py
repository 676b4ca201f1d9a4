from trivia_live import socketio

NAMESPACE = '/ws'


def room_channel(room_code: str) -> str:
    return f"room:{room_code.upper()}"


def publish_room_update(room) -> None:
    """Fan the room's public snapshot out to every subscriber of its channel."""
    socketio.emit('state_update', room.to_dict(), to=room_channel(room.room_code), namespace=NAMESPACE)
