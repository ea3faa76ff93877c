"""Error taxonomy for chat operations.

Every error raised by a service derives from ``ChatError`` and carries the
HTTP status it maps to, so routers never translate errors by hand.
"""


class ChatError(Exception):

    status_code = 500
    code = "chat_error"
    default_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationFailed(ChatError):

    status_code = 400
    code = "validation_error"
    default_message = "Invalid request"


class NotFoundError(ChatError):

    status_code = 404
    code = "not_found"
    default_message = "Conversation not found"


class AccessDeniedError(NotFoundError):
    # Rendered exactly like NotFoundError so membership checks do not reveal
    # whether a conversation exists.

    code = "access_denied"


class UpstreamError(ChatError):

    status_code = 503
    code = "upstream_failure"
    default_message = "Storage temporarily unavailable"
