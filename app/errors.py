"""Error taxonomy shared by the assessment services.

Every error carries the HTTP status it maps to, so the single exception
handler registered in ``app.server`` can render it without routes having
to translate anything by hand.
"""


class AssessmentError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(AssessmentError):
    status_code = 404


class UnauthorizedError(AssessmentError):
    """Ownership chain mismatch. Always 403 so existence is not leaked."""

    status_code = 403


class ConflictError(AssessmentError):
    status_code = 409


class InvalidTransitionError(ConflictError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move attempt from {current} to {target}")
        self.current = current
        self.target = target


class ValidationError(AssessmentError):
    status_code = 400


class UpstreamError(AssessmentError):
    status_code = 502


class TranscriptionError(UpstreamError):
    pass


class GrammarCheckError(UpstreamError):
    pass


class RubricScoringError(UpstreamError):
    pass
