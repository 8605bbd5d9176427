"""Error taxonomy for call signaling, quality monitoring and ringback."""
from typing import Optional


class CallSignalError(Exception):
    """Base class for all callsignal errors."""


class TransportError(CallSignalError):
    """Statistics query or media connection failure."""


class WriteConflictError(CallSignalError):
    """A conditional call write lost to another writer."""

    def __init__(self, call_id: str, expected_status: Optional[str] = None, actual_status: Optional[str] = None):
        self.call_id = call_id
        self.expected_status = expected_status
        self.actual_status = actual_status
        if actual_status is None:
            message = f"Call {call_id} no longer exists"
        else:
            message = (
                f"Call {call_id} is '{actual_status}', expected '{expected_status}'"
            )
        super().__init__(message)


class WriteFailureError(CallSignalError):
    """A call write failed for a reason other than a lost race."""


class NoActiveCallError(CallSignalError):
    """Accept or reject was invoked with no incoming call held."""


class ResourceReleaseError(CallSignalError):
    """An audio resource could not be released."""


class ProfileNotFoundError(CallSignalError):
    """No profile exists for the requested user."""
