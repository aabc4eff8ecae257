"""
Leaderboard API endpoints and maintenance passes
"""
import logging
from typing import Optional, List
from fastapi import APIRouter, HTTPException, Query

from progress_service.exceptions import NotFoundError
from progress_service.logic import leaderboard_service, listeners
from progress_service.schemas_leaderboards import (
    PERIOD_WEEKLY,
    SCOPE_GLOBAL,
    TRACKED_PERIODS,
    ChildRankResponse,
    LeaderboardResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Leaderboards"])


@router.get("/leaderboards", response_model=LeaderboardResponse)
async def get_leaderboard(
    scope: str = Query(SCOPE_GLOBAL, description="global or age-group"),
    period: str = Query(PERIOD_WEEKLY, description="daily, weekly, monthly or all-time"),
    age_group: Optional[str] = Query(None, alias="ageGroup")
):
    """Top of a leaderboard snapshot (created empty when missing)."""
    try:
        return leaderboard_service.get_leaderboard(scope, period, age_group)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error getting leaderboard: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/children/{child_id}/rank", response_model=ChildRankResponse)
async def get_child_rank(child_id: str, period: str = Query(PERIOD_WEEKLY)):
    try:
        return leaderboard_service.get_child_rank(child_id, period)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error getting child rank: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/leaderboards/sync")
async def sync_leaderboards(periods: List[str] = Query(list(TRACKED_PERIODS))):
    """Rebuild every active child's leaderboard entries."""
    try:
        for period in periods:
            leaderboard_service.period_bounds(period)
        return leaderboard_service.sync_leaderboards(periods)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error syncing leaderboards: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/maintenance/reconcile")
async def reconcile():
    """Retry derived updates for children left stale by degraded events."""
    try:
        return listeners.reconcile_pending()
    except Exception as e:
        logger.error(f"Error reconciling: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
