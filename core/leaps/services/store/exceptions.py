"""Exceptions raised by :mod:`leaps.services.store`."""


class StoreBaseException(RuntimeError):
    """Base for store service exceptions."""


class NoSuchSubmission(StoreBaseException):
    """A request was made for a submission that does not exist."""


class NoSuchUser(StoreBaseException):
    """A request was made for a user that does not exist."""


class NoSuchBadge(StoreBaseException):
    """A request was made for a badge that does not exist."""


class NoSuchKajabiEvent(StoreBaseException):
    """A request was made for a stored webhook event that does not exist."""


class DuplicateEntry(StoreBaseException):
    """A row with the same unique key already exists."""


class BadgeInUse(StoreBaseException):
    """A badge that participants have earned cannot be deleted."""


class TransactionFailed(StoreBaseException):
    """Raised when there was a problem committing changes to the database."""


class Unavailable(StoreBaseException):
    """The data store is not available."""
