class SignalingError(Exception):
    """Base error for the relay. Carries the HTTP status it maps to at the request boundary."""

    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidRequest(SignalingError):
    status_code = 400
    default_message = "Invalid JSON body"


class RoomNotFound(SignalingError):
    status_code = 404
    default_message = "Room not found"


class RecipientNotFound(RoomNotFound):
    default_message = "Recipient not found"


class ClientNotRegistered(SignalingError):
    status_code = 404
    default_message = "Client not registered in room"


class RecipientUnavailable(SignalingError):
    """Target is registered but has no live stream. Callers may retry."""

    status_code = 409
    default_message = "Recipient unavailable"


class DuplicateClient(SignalingError):
    status_code = 409
    default_message = "Client already registered in room"
