from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field


class QuestionType(str, Enum):
    WRITING = "WRITING"
    SPEAKING = "SPEAKING"


class CefrLevel(str, Enum):
    A1 = "A1"
    A2 = "A2"
    B1 = "B1"
    B2 = "B2"
    C1 = "C1"
    C2 = "C2"


class AssessmentStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"


class SessionStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"
    TERMINATED = "TERMINATED"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# ── Templates ─────────────────────────────────────────────────────────

class SelectionRule(BaseModel):
    cefr_levels: list[CefrLevel]
    count: int = Field(ge=0)


class SectionTemplate(BaseModel):
    name: str
    type: QuestionType
    duration_minutes: int = 15
    rules: list[SelectionRule] = []

    @property
    def total_questions(self) -> int:
        return sum(rule.count for rule in self.rules)


class AssessmentTemplate(BaseModel):
    title: Optional[str] = None
    total_duration: int = 50
    max_attempts: int = 1
    sections: list[SectionTemplate] = []


# ── Request bodies ────────────────────────────────────────────────────

class GenerateAssessmentRequest(BaseModel):
    assessmentType: str = "LANGUAGE"


class StartAssessmentRequest(BaseModel):
    assessmentId: int


class AnswerSubmission(BaseModel):
    questionId: int
    sectionId: int
    answerText: Optional[str] = None
    audioFilePath: Optional[str] = None
    isSkipped: bool = False
    typingSpeed: Optional[float] = None
    timeSpentSeconds: Optional[int] = None


class ViolationEvent(BaseModel):
    type: str
    timestamp: Optional[Union[str, int, float]] = None
    severity: Optional[str] = None
    details: Optional[dict] = None
    violationCount: Optional[int] = None


class ViolationBatch(BaseModel):
    # Items are validated by the violation engine so a malformed entry
    # yields its indexed error message rather than a generic 422.
    violations: list[dict]


class FeedbackSubmission(BaseModel):
    feedback: str
