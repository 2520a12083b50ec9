"""Error taxonomy shared by the poll loop and the HTTP layer.

Routes raise these; ``main`` maps them to ``{"error": message}`` with the
class's status code.
"""


class ReplaiError(Exception):
    status_code = 500

    def __init__(self, message: str = '', **details):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = details


class ValidationError(ReplaiError):
    status_code = 400


class AuthenticationError(ReplaiError):
    status_code = 401


class PermissionDeniedError(ReplaiError):
    status_code = 403


class NotFoundError(ReplaiError):
    status_code = 404


class NotConnectedError(NotFoundError):
    """Mailbox referenced after it was disconnected (or never connected)."""


class SyncPausedError(ReplaiError):
    status_code = 409


class ProviderError(ReplaiError):
    """Failure from a mail, calendar, payment or generative vendor call."""
    status_code = 502

    def __init__(self, message: str = '', provider: str | None = None, **details):
        super().__init__(message, **details)
        self.provider = provider


class GenerationError(ProviderError):
    pass


class PersistenceError(ReplaiError):
    status_code = 500
