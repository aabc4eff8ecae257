"""
Leaderboard Schemas (Pydantic)
"""
from pydantic import BaseModel, Field
from typing import Optional, List


SCOPE_GLOBAL = "global"
SCOPE_AGE_GROUP = "age-group"
SCOPES = (SCOPE_GLOBAL, SCOPE_AGE_GROUP)

PERIOD_DAILY = "daily"
PERIOD_WEEKLY = "weekly"
PERIOD_MONTHLY = "monthly"
PERIOD_ALL_TIME = "all-time"
PERIODS = (PERIOD_DAILY, PERIOD_WEEKLY, PERIOD_MONTHLY, PERIOD_ALL_TIME)

# Periods recomputed on every event
TRACKED_PERIODS = (PERIOD_ALL_TIME, PERIOD_WEEKLY, PERIOD_MONTHLY)


class RankingEntry(BaseModel):
    rank: int = Field(..., ge=1)
    childId: str
    score: int = 0
    totalPoints: int = 0
    gamesCompleted: int = 0
    modulesCompleted: int = 0
    achievementsEarned: int = 0
    currentStreak: int = 0
    previousRank: Optional[int] = None
    rankChange: int = Field(default=0, description="previousRank - rank, positive = moved up")


class LeaderboardResponse(BaseModel):
    scope: str
    period: str
    ageGroup: Optional[str] = None
    periodStart: str
    periodEnd: str
    lastUpdated: Optional[str] = None
    rankings: List[RankingEntry] = Field(default_factory=list)


class RankPosition(BaseModel):
    rank: int
    totalParticipants: int
    score: int
    rankChange: int


class ChildRankResponse(BaseModel):
    globalRank: Optional[RankPosition] = None
    ageGroupRank: Optional[RankPosition] = None
    percentile: int
    totalPoints: int
    level: int
