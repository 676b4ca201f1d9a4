import uuid
from typing import MutableMapping, Optional


def player_namespace(room_code: str) -> str:
    return f"trivia_player_{room_code.upper()}"


def ensure_local_player_id(namespace_key: str, storage: Optional[MutableMapping] = None) -> str:
    """Return the player token stored under ``namespace_key``, minting one if absent.

    ``storage`` is whatever the client persists locally; for browser clients
    of this service that is the signed Flask session cookie. When storage is
    missing or refuses the write, the fresh token is still returned: the
    player just will not be recognised on rejoin.
    """
    if storage is not None:
        try:
            existing = storage.get(namespace_key)
        except RuntimeError:
            # Flask raises this when no request (and so no session) is active
            existing = None
            storage = None
        if existing:
            return str(existing)

    generated = str(uuid.uuid4())
    if storage is not None:
        try:
            storage[namespace_key] = generated
        except RuntimeError:
            pass
    return generated
