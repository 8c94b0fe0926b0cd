from __future__ import annotations


class QuoteboardError(Exception):
    """Base for failures reported to callers as typed outcomes.

    ``kind`` names the failure for clients, ``status_code`` is the HTTP status
    the API surface renders it with.
    """

    kind = "Error"
    status_code = 500
    default_message = "Request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(QuoteboardError):
    kind = "Unauthenticated"
    status_code = 401
    default_message = "Unauthorized"


class InvalidInput(QuoteboardError):
    kind = "InvalidInput"
    status_code = 400
    default_message = "Invalid input"


class QuoteNotFound(QuoteboardError):
    kind = "QuoteNotFound"
    status_code = 404
    default_message = "Quote not found"

    def __init__(self, quote_id: int | None = None, message: str | None = None):
        self.quote_id = quote_id
        super().__init__(message)


class VoteNotFound(QuoteboardError):
    kind = "VoteNotFound"
    status_code = 404
    default_message = "Vote not found"

    def __init__(self, user_id: int | None = None, quote_id: int | None = None):
        self.user_id = user_id
        self.quote_id = quote_id
        super().__init__()


class AlreadyVoted(QuoteboardError):
    kind = "AlreadyVoted"
    status_code = 409
    default_message = "You have already voted for a quote"

    def __init__(self, user_id: int | None = None):
        self.user_id = user_id
        super().__init__()


class VotingClosedForQuote(QuoteboardError):
    kind = "VotingClosedForQuote"
    status_code = 409
    default_message = "Voting is only allowed when the quote has 0 votes"

    def __init__(self, quote_id: int | None = None):
        self.quote_id = quote_id
        super().__init__()


class UsernameTaken(QuoteboardError):
    kind = "UsernameTaken"
    status_code = 409
    default_message = "Username already registered"


class TransientStoreError(QuoteboardError):
    """Transaction or connectivity failure; safe to retry the whole operation."""

    kind = "TransientStoreError"
    status_code = 500
    default_message = "Storage temporarily unavailable, please retry"


class StoreTimeout(TransientStoreError):
    """Waited longer than allowed for the write path."""

    kind = "StoreTimeout"
    default_message = "Timed out waiting for the write path"
