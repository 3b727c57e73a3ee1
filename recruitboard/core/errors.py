class RankingError(Exception):
    """Base exception for the ranking engine."""

    pass


class StoreUnavailableError(RankingError):
    """Raised when the Submission Store cannot be read or written."""

    pass


class InvalidScoresError(RankingError):
    """Raised when a metric score mapping fails validation."""

    pass


class UnknownTaskError(RankingError):
    """Raised when grading refers to a task the store does not hold."""

    pass


class UnknownParticipantError(RankingError):
    """Raised when grading refers to a participant the store does not hold."""

    pass
