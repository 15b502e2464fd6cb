"""Failure types surfaced by the feed client.

None of these are fatal: they are reported to the caller (the UI layer) and
never retried automatically.
"""

from typing import Optional


class QBoxError(Exception):
    """Base class for all feed client failures."""


class ApiError(QBoxError):
    """The backend rejected a request or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class LoadFailure(QBoxError):
    """A snapshot fetch failed. The caller may re-invoke the load."""

    def __init__(self, cause: str):
        super().__init__(f"Unable to load questions: {cause}")
        self.cause = cause


class ActionFailure(QBoxError):
    """A dispatcher action was rejected or errored. No local state was changed."""

    def __init__(self, action: str, cause: str, question_id: Optional[str] = None):
        target = f" on question {question_id}" if question_id else ""
        super().__init__(f"{action} failed{target}: {cause}")
        self.action = action
        self.cause = cause
        self.question_id = question_id


class StaleEventFailure(QBoxError):
    """An update event referenced a question this client has not observed.

    Built and logged when the event is dropped, never raised.
    """

    def __init__(self, kind: str, question_id: Optional[str]):
        super().__init__(f"{kind} for unknown question {question_id}")
        self.kind = kind
        self.question_id = question_id
