"""Error types raised by the messaging engine."""

from typing import Optional


class SyncError(Exception):
    """Base class for engine errors."""
    pass


class ValidationError(SyncError):
    """Raised when input is rejected before any network call."""
    pass


class TransportError(SyncError):
    """Raised when the server cannot be reached or refuses a request.

    ``detail`` carries the human-readable text returned by the server, if any,
    and is shown verbatim to the user on manual actions.
    """

    def __init__(
        self,
        message: str = "Transport failure",
        detail: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail
        self.status_code = status_code

    @property
    def user_message(self) -> str:
        return self.detail or self.message


class OfflineError(SyncError):
    """Raised when a send is attempted while the device is offline."""

    def __init__(self, message: str = "You are offline. The message was not sent.") -> None:
        super().__init__(message)
        self.message = message


class StaleResultDiscarded(SyncError):
    """Internal signal for a fetch superseded by a newer one or by close()."""

    def __init__(self, seq: int, last_applied: int, cancelled: bool = False) -> None:
        super().__init__(
            f"Fetch #{seq} discarded (last applied #{last_applied}, cancelled={cancelled})"
        )
        self.seq = seq
        self.last_applied = last_applied
        self.cancelled = cancelled


class SessionClosedError(SyncError):
    """Raised when a closed conversation session is used."""
    pass
