"""Error taxonomy shared by the crawl, scoring and pipeline layers."""


class InsightError(Exception):
    """Base class for all application errors."""


class OracleDecisionError(InsightError):
    """Decision oracle timed out or returned something unusable."""

    def __init__(self, message: str, raw: str | None = None):
        super().__init__(message)
        self.raw = raw


class NavigationError(InsightError):
    """A page could not be reached within its navigation timeout."""


class DomainViolation(InsightError):
    """A URL or click target points outside the domain allowlist."""


class BudgetExceeded(InsightError):
    """A crawl budget (pages, clicks, depth, time, candidates) ran out."""

    def __init__(self, budget: str, limit: int | float):
        super().__init__(f"{budget} budget exhausted ({limit})")
        self.budget = budget
        self.limit = limit


class ScoreRefreshError(InsightError):
    """Store failure while recomputing one story's score."""

    def __init__(self, story_id: str, cause: Exception):
        super().__init__(f"score refresh failed for {story_id}: {cause}")
        self.story_id = story_id
        self.cause = cause


class RelevanceOracleError(InsightError):
    """Relevance oracle call failed (transport or unparsable reply)."""


class InvalidFeedbackError(InsightError, ValueError):
    """Feedback payload carries an unknown action, confidence or source."""


class RunInProgressError(InsightError):
    """A discovery pass is already running."""
