"""
Achievement Schemas (Pydantic)

Requirements are a closed set of tagged variants discriminated by `kind`.
A definition holds a list of them and is satisfied only when all hold.
"""
from pydantic import BaseModel, Field, field_validator
from typing import Annotated, Optional, Dict, List, Any, Literal, Union

from progress_service.schemas import VALID_AGE_GROUPS


# ============================================================================
# Requirement variants
# ============================================================================

class GamesCompleted(BaseModel):
    kind: Literal["games-completed"] = "games-completed"
    count: int = Field(..., gt=0)


class SpecificGames(BaseModel):
    """Every listed game must have a completed record"""
    kind: Literal["specific-games"] = "specific-games"
    contentIds: List[str] = Field(..., min_length=1)


class ModulesCompleted(BaseModel):
    kind: Literal["modules-completed"] = "modules-completed"
    count: int = Field(..., gt=0)


class SpecificModules(BaseModel):
    kind: Literal["specific-modules"] = "specific-modules"
    contentIds: List[str] = Field(..., min_length=1)


class TotalPoints(BaseModel):
    kind: Literal["total-points"] = "total-points"
    points: int = Field(..., gt=0)


class StreakDays(BaseModel):
    kind: Literal["streak-days"] = "streak-days"
    days: int = Field(..., gt=0)


class ReachLevel(BaseModel):
    kind: Literal["reach-level"] = "reach-level"
    level: int = Field(..., gt=0)


class PerfectScores(BaseModel):
    kind: Literal["perfect-scores"] = "perfect-scores"
    count: int = Field(..., gt=0)


class TimeSpentMinutes(BaseModel):
    kind: Literal["time-spent"] = "time-spent"
    minutes: int = Field(..., gt=0)


Requirement = Annotated[
    Union[
        GamesCompleted,
        SpecificGames,
        ModulesCompleted,
        SpecificModules,
        TotalPoints,
        StreakDays,
        ReachLevel,
        PerfectScores,
        TimeSpentMinutes,
    ],
    Field(discriminator="kind"),
]


# Flat requirement object used by older catalog entries -> variant builder
LEGACY_REQUIREMENT_FIELDS = {
    'gamesCompleted': lambda v: {'kind': 'games-completed', 'count': v},
    'specificGames': lambda v: {'kind': 'specific-games', 'contentIds': [str(x) for x in v]},
    'modulesCompleted': lambda v: {'kind': 'modules-completed', 'count': v},
    'specificModules': lambda v: {'kind': 'specific-modules', 'contentIds': [str(x) for x in v]},
    'totalPoints': lambda v: {'kind': 'total-points', 'points': v},
    'streakDays': lambda v: {'kind': 'streak-days', 'days': v},
    'reachLevel': lambda v: {'kind': 'reach-level', 'level': v},
    'perfectScores': lambda v: {'kind': 'perfect-scores', 'count': v},
    'timeSpent': lambda v: {'kind': 'time-spent', 'minutes': v},
}


def requirements_from_legacy(requirements: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Convert {"gamesCompleted": 3, "specificGames": [...], ...} to variant dicts.

    Zero / empty values mean "not required" and are dropped.
    """
    variants = []
    for field, builder in LEGACY_REQUIREMENT_FIELDS.items():
        value = requirements.get(field)
        if value:
            variants.append(builder(value))
    return variants


# ============================================================================
# Definitions
# ============================================================================

class AchievementDefinition(BaseModel):
    """Catalog entry for an achievement"""
    achievementId: str = Field(..., min_length=1)
    name: str
    description: str = ""
    category: str = Field(default="special", description="games, learning, streak, points, mastery, special")
    icon: Optional[str] = None
    pointsReward: int = Field(default=100, ge=0)
    requirements: List[Requirement] = Field(default_factory=list)
    isActive: bool = True
    isSecret: bool = Field(default=False, description="Hidden until earned")
    ageGroups: List[str] = Field(default_factory=lambda: list(VALID_AGE_GROUPS))
    order: int = Field(default=0, ge=0)
    timesEarned: int = Field(default=0, ge=0, description="Lifetime grants across all children")

    @field_validator('requirements', mode='before')
    @classmethod
    def accept_legacy_requirements(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return requirements_from_legacy(v)
        return v

    @field_validator('ageGroups')
    @classmethod
    def validate_age_groups(cls, v: List[str]) -> List[str]:
        invalid = set(v) - set(VALID_AGE_GROUPS)
        if invalid:
            raise ValueError(f"ageGroups must be within {VALID_AGE_GROUPS}, got: {sorted(invalid)}")
        return v


class ChildStats(BaseModel):
    """Aggregates a child's history is judged against"""
    games_completed: int = 0
    completed_game_ids: List[str] = Field(default_factory=list)
    modules_completed: int = 0
    completed_module_ids: List[str] = Field(default_factory=list)
    total_points: int = 0
    current_streak: int = 0
    level: int = 1
    perfect_scores: int = 0
    time_spent_minutes: int = 0


class AchievementStatus(BaseModel):
    achievementId: str
    name: str
    description: str
    category: str
    icon: Optional[str] = None
    pointsReward: int
    earned: bool
    earnedAt: Optional[str] = None
    isSecret: bool = False


class ChildAchievementsResponse(BaseModel):
    earned: int
    total: int
    achievements: List[AchievementStatus]


class BadgeAwardRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    icon: Optional[str] = None
