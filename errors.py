class RoomError(Exception):
    """Base for recoverable, connection-local room failures.

    ``message`` is the text sent back to the client in an ``error`` event.
    """

    default_message = "Room error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidParameters(RoomError):
    default_message = "Invalid parameters"


class RoomNotFound(RoomError):
    default_message = "Room not found"


class RoomExpired(RoomError):
    default_message = "Room has expired"
