"""Exceptions raised during event handling and review."""

from typing import TypeVar

EventType = TypeVar('EventType')


class InvalidEvent(ValueError):
    """Raised when an invalid event is encountered."""

    def __init__(self, event: EventType, message: str = '') -> None:
        """Use the :class:`.Event` to build an error message."""
        self.event = event
        self.message = message
        r = f"Invalid {event.event_type}: {message}"  # type: ignore
        super(InvalidEvent, self).__init__(r)


class AlreadyReviewed(InvalidEvent):
    """The submission is no longer pending review."""


class InvalidRequest(ValueError):
    """The parameters of a requested operation are not acceptable."""


class InvalidAdjustment(InvalidRequest):
    """A reviewer point adjustment is outside of the allowed bounds."""


class SubmissionLimitExceeded(InvalidRequest):
    """Approving a submission would exceed a rolling program cap."""

    def __init__(self, limit_type: str, attempted: int, cap: int) -> None:
        self.limit_type = limit_type
        self.attempted = attempted
        self.cap = cap
        super(SubmissionLimitExceeded, self).__init__(
            f'{limit_type} limit exceeded: {attempted} exceeds {cap}'
            ' in a 7-day window'
        )


class InvalidPayload(ValueError):
    """An inbound webhook payload could not be interpreted."""


class AlreadyProcessed(RuntimeError):
    """A webhook event has already been handled."""


class IntegrationFailed(RuntimeError):
    """A call to an external integration did not succeed."""


class NoSuchSubmission(Exception):
    """An operation was performed on/for a submission that does not exist."""


class SaveError(RuntimeError):
    """Failed to persist event state."""


class NothingToDo(RuntimeError):
    """There is nothing to do."""


class NotPermitted(RuntimeError):
    """The actor's role does not allow the requested change."""
