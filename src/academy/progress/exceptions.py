"""Progress pipeline errors.

Every error carries the HTTP status the API answers with, so routers and the
global handler can map them without a lookup table.
"""

from __future__ import annotations


class ProgressError(ValueError):
    """Base class for user-facing lesson-completion failures."""

    status_code = 400
    default_message = "Failed to save progress"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class LessonNotFoundError(ProgressError):
    status_code = 404
    default_message = "Lesson not found"


class LessonCourseMismatchError(ProgressError):
    status_code = 400
    default_message = "Lesson does not belong to this course"


class QuizScoreTooLowError(ProgressError):
    status_code = 422
    default_message = "Quiz score below 70% - not marked as complete"


class NotEnrolledError(ProgressError):
    status_code = 409
    default_message = "User not enrolled in course. Please enroll first."


class CompletionSaveError(ProgressError):
    status_code = 500
    default_message = "Failed to save completion"


class CompletionExistsError(Exception):
    """The (user, lesson) completion row already exists."""


class ProgressReadError(ProgressError):
    status_code = 503
    default_message = "Failed to fetch updated progress"
