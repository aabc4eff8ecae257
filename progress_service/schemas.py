"""
Pydantic schemas for progress-service

All schemas use Pydantic v2 syntax with ConfigDict
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, Dict, Any, List, Literal


# ============= ENUMS AND CONSTANTS =============

VALID_AGE_GROUPS = ["3-5", "6-8", "9-12"]

VALID_CONTENT_TYPES = ["game", "learning-module"]

OUTCOME_OK = "ok"
OUTCOME_DEGRADED = "degraded"


# ============= CHILD SCHEMAS =============

class ChildCreate(BaseModel):
    """Schema for registering a child with the engine"""
    childId: str = Field(..., min_length=1, description="Unique child identifier")
    name: str = Field(default="", max_length=50)
    username: Optional[str] = Field(default=None, min_length=3, max_length=20)
    ageGroup: str = Field(..., description="Age bracket (3-5, 6-8, 9-12)")
    isActive: bool = True

    @field_validator('ageGroup')
    @classmethod
    def validate_age_group(cls, v: str) -> str:
        if v not in VALID_AGE_GROUPS:
            raise ValueError(
                f"Invalid age group '{v}'. Must be one of: {', '.join(VALID_AGE_GROUPS)}"
            )
        return v


class LevelInfo(BaseModel):
    level: int
    experiencePoints: int
    xpForNextLevel: int
    levelProgress: int = Field(..., ge=0, le=100, description="Percent of the current level done")
    pointsToNextLevel: int


class ChildResponse(BaseModel):
    childId: str
    name: str
    username: str
    ageGroup: str
    totalPoints: int
    experiencePoints: int
    level: int
    currentStreak: int
    longestStreak: int
    lastActivityDate: Optional[str] = None
    isActive: bool
    levelInfo: Optional[LevelInfo] = None

    model_config = ConfigDict(extra="ignore")


# ============= CONTENT SCHEMAS =============

class ContentItemCreate(BaseModel):
    """Game or learning module as seen by the engine"""
    contentId: str = Field(..., min_length=1)
    contentType: str
    title: str = ""
    subject: Optional[str] = Field(default=None, description="Module subject or game category")
    ageGroups: List[str] = Field(default_factory=lambda: list(VALID_AGE_GROUPS))
    isActive: bool = True
    isPublished: bool = True
    popularity: int = Field(default=0, ge=0, description="Play count / enrollment count")
    pointsPerCompletion: Optional[int] = Field(default=None, ge=0)
    bonusPoints: Optional[int] = Field(default=None, ge=0)
    pointsPerLesson: Optional[int] = Field(default=None, ge=0)
    completionPoints: Optional[int] = Field(default=None, ge=0)
    totalItems: Optional[int] = Field(default=None, ge=1, description="Lessons in a module / levels in a game")
    passingScore: Optional[int] = Field(default=None, ge=0, le=100)

    @field_validator('contentType')
    @classmethod
    def validate_content_type(cls, v: str) -> str:
        if v not in VALID_CONTENT_TYPES:
            raise ValueError(f"contentType must be one of {VALID_CONTENT_TYPES}, got: {v}")
        return v


# ============= EVENT PAYLOADS =============

class ActivityStartRequest(BaseModel):
    childId: str
    contentType: str
    contentId: str
    attemptKey: Optional[str] = Field(default=None, description="Play session identifier (games only)")

    @field_validator('contentType')
    @classmethod
    def validate_content_type(cls, v: str) -> str:
        if v not in VALID_CONTENT_TYPES:
            raise ValueError(f"contentType must be one of {VALID_CONTENT_TYPES}, got: {v}")
        return v


class CompletionOutcome(BaseModel):
    """What the client reports when an activity ends or checkpoints"""
    score: Optional[int] = Field(default=None, ge=0, le=100)
    timeSpent: int = Field(default=0, ge=0, description="Seconds spent since the last report")
    levelOrLesson: Optional[int] = Field(default=None, ge=1)
    completed: bool = False


class ActivityCompleteRequest(CompletionOutcome):
    childId: str


class LessonCompleteRequest(BaseModel):
    childId: str
    score: Optional[int] = Field(default=None, ge=0, le=100)
    timeSpent: int = Field(default=0, ge=0)


class QuizResult(BaseModel):
    """
    Graded quiz attempt.

    Grading is content-specific and happens before the engine; only the
    resulting score and pass flag enter it. When `passed` is omitted it is
    derived from the module's passing score.
    """
    score: int = Field(..., ge=0, le=100)
    totalQuestions: int = Field(default=0, ge=0)
    correctAnswers: int = Field(default=0, ge=0)
    timeSpent: int = Field(default=0, ge=0)
    passed: Optional[bool] = None


class QuizSubmitRequest(QuizResult):
    childId: str


# ============= RESULTS =============

class AddPointsResult(BaseModel):
    leveledUp: bool
    newLevel: int
    totalPoints: int
    experiencePoints: int


class EventOutcome(BaseModel):
    """
    Whether every effect of an event was applied.

    `degraded` means the primary write (the ProgressRecord) is committed but
    achievements and/or leaderboards are stale and queued for reconciliation.
    """
    status: Literal["ok", "degraded"] = OUTCOME_OK
    reasons: List[str] = Field(default_factory=list)

    @property
    def is_degraded(self) -> bool:
        return self.status == OUTCOME_DEGRADED


class EventResult(BaseModel):
    progress: Dict[str, Any]
    pointsEarned: int = 0
    leveledUp: bool = False
    newLevel: Optional[int] = None
    achievementsUnlocked: List[Dict[str, Any]] = Field(default_factory=list)
    outcome: EventOutcome = Field(default_factory=EventOutcome)
