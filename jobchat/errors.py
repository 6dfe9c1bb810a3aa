class ChatError(Exception):
    """Base for failures reported back to a single caller or frame."""

    kind = "ChatError"
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class Unauthenticated(ChatError):
    kind = "Unauthenticated"
    status_code = 401


class InvalidCredentials(Unauthenticated):
    """Raised by the token verifier for malformed, forged or expired tokens."""


class Unauthorized(ChatError):
    kind = "Unauthorized"
    status_code = 403


class Forbidden(Unauthorized):
    kind = "Forbidden"


class NotFound(ChatError):
    kind = "NotFound"
    status_code = 404


class ConversationNotStarted(ChatError):
    kind = "ConversationNotStarted"
    status_code = 409


class BadRequest(ChatError):
    kind = "BadRequest"
    status_code = 400
