"""Exception hierarchy shared across the sync layer."""


class HubbleError(Exception):
    """Base class for all hubble errors."""


class UnknownBodyError(HubbleError, LookupError):
    """Body id or name is not in the body table."""


class MissingObserverError(HubbleError, ValueError):
    """A computation needed an observer location and none was available."""


class EphemerisError(HubbleError):
    """The ephemeris engine could not produce a value (not found, out of range, ...)."""


class TransportError(HubbleError):
    """Timeline API call failed or was rejected."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status
