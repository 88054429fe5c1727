"""
Error kinds raised by the room service.

Every error carries a user-facing `message`; the HTTP layer maps each kind
to a status code via `status_code`.
"""


class PlayRoomsError(Exception):
    """Base class for all room service errors"""
    status_code = 400
    message = "Request could not be completed"

    def __init__(self, message=None):
        if message:
            self.message = message
        super().__init__(self.message)


class Unauthenticated(PlayRoomsError):
    """No session identity available; sign in and retry the same call"""
    status_code = 401
    message = "Sign in to continue"


class RoomNotFound(PlayRoomsError):
    """Room absent or already deleted"""
    status_code = 404
    message = "Room no longer available"

    def __init__(self, room_id):
        self.room_id = room_id
        super().__init__()


class RoomFull(PlayRoomsError):
    """Room already has two players or no longer accepts players"""
    status_code = 409
    message = "Room is full"

    def __init__(self, room_id):
        self.room_id = room_id
        super().__init__()


class NotYourTurn(PlayRoomsError):
    """Move attempted by someone other than the current turn holder"""
    status_code = 409
    message = "Not your turn"

    def __init__(self, room_id, identity):
        self.room_id = room_id
        self.identity = identity
        super().__init__()


class NotParticipant(PlayRoomsError):
    """Caller is not one of the room's players"""
    status_code = 403
    message = "You are not a player in this room"


class InvalidNextTurn(PlayRoomsError):
    """Next turn must go to one of the room's players"""
    status_code = 422
    message = "Next turn must belong to a player in the room"


class InvalidWinner(PlayRoomsError):
    """Winner must be a player in the room or a draw"""
    status_code = 422
    message = "Winner must be a player in the room or a draw"


class StoreUnavailable(PlayRoomsError):
    """Transient storage failure, surfaced after retries are exhausted"""
    status_code = 503
    message = "Connection problem, please try again"


class BridgeHandshakeTimeout(PlayRoomsError):
    """Embedded game never signalled READY"""
    status_code = 504
    message = "Could not connect to the game"
