"""
Domain Errors
=============
Every failure is local to one user action and recoverable by retrying.
The app factory maps each class to an HTTP status.
"""


class TallyError(Exception):
    """Base class for venue tally failures."""
    status_code = 500


class StoreUnavailableError(TallyError):
    """The event store cannot be reached. Mutating actions stay disabled."""
    status_code = 503


class WriteRejectedError(TallyError):
    """A single insert/update/delete was rejected by the store."""
    status_code = 502


class ArchiveError(TallyError):
    """A reset failed; nothing was archived and no live rows were removed."""
    status_code = 500


class AuthenticationError(TallyError):
    status_code = 401


class AuthorizationError(TallyError):
    status_code = 403
