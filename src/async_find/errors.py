class AsyncFindError(Exception):
    """Base class for errors raised by async-find."""


class SetupError(AsyncFindError):
    """The worker process for a session could not be started or reached."""


class ProtocolError(AsyncFindError):
    """A request or response line could not be parsed."""


class InvalidTransitionError(AsyncFindError):
    """Raised when a session is asked to move to a state it cannot reach."""

    def __init__(self, from_state, to_state, reason: str = ""):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason
        message = f"Invalid transition {from_state.value} -> {to_state.value}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)
