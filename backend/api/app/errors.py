from __future__ import annotations


class CurationError(Exception):
    """Base class for every error the curation core surfaces to callers."""


class NotFound(CurationError):
    """Artifact/user missing, or not visible to the caller."""


class PreconditionFailed(CurationError):
    """Wrong status, deadline passed, self-vote, already published, etc."""


class Conflict(CurationError):
    """Duplicate vote/flag/review, or a status write lost to a concurrent actor."""


class Forbidden(CurationError):
    """Caller lacks ownership or role."""


class ExternalUnavailable(CurationError):
    """Content store or ledger unreachable, timed out, or rejected the request."""
