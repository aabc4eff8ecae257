"""
Progress API endpoints - children, activities, modules and the catalog
"""
import logging
from fastapi import APIRouter, HTTPException, status

from progress_service import dynamo, dynamo_achievements
from progress_service.exceptions import NotFoundError
from progress_service.logic import achievement_service, gamification, insights, listeners
from progress_service.schemas import (
    ActivityCompleteRequest,
    ActivityStartRequest,
    ChildCreate,
    ChildResponse,
    CompletionOutcome,
    ContentItemCreate,
    EventResult,
    LessonCompleteRequest,
    QuizResult,
    QuizSubmitRequest,
)
from progress_service.schemas_achievements import (
    AchievementDefinition,
    BadgeAwardRequest,
    ChildAchievementsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Progress"])


# ============= CHILDREN =============

@router.post("/children", response_model=ChildResponse, status_code=status.HTTP_201_CREATED)
async def create_child(child: ChildCreate):
    """Register a child with zeroed gamification stats."""
    try:
        child_data = dynamo.create_child(child.model_dump())
        return ChildResponse(**child_data, levelInfo=gamification.level_info(child_data))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error creating child: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/children/{child_id}", response_model=ChildResponse)
async def get_child(child_id: str):
    try:
        child = dynamo.require_child(child_id)
        return ChildResponse(**child, levelInfo=gamification.level_info(child))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error getting child: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/children/{child_id}/progress")
async def get_child_progress(child_id: str):
    try:
        return insights.get_child_progress(child_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error getting progress overview: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/children/{child_id}/achievements", response_model=ChildAchievementsResponse)
async def get_child_achievements(child_id: str):
    try:
        return achievement_service.get_child_achievements(child_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error getting achievements: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/children/{child_id}/badges")
async def award_badge(child_id: str, request: BadgeAwardRequest):
    try:
        return achievement_service.award_badge(child_id, request.name, request.icon)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error awarding badge: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/children/{child_id}/suggestions")
async def get_suggestions(child_id: str):
    try:
        return insights.get_suggested_activities(child_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error getting suggestions: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/children/{child_id}/subjects")
async def get_subject_progress(child_id: str):
    """Progress grouped by subject, best average score first."""
    try:
        return insights.get_subject_progress(child_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error getting subject progress: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


# ============= ACTIVITIES =============

@router.post("/activities/start", response_model=EventResult, status_code=status.HTTP_201_CREATED)
async def start_activity(request: ActivityStartRequest):
    """Open a progress record for a game session or enroll in a module."""
    try:
        return listeners.on_activity_started(
            request.childId, request.contentType, request.contentId, request.attemptKey
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error starting activity: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/activities/{progress_id}/complete", response_model=EventResult)
async def complete_activity(progress_id: str, request: ActivityCompleteRequest):
    try:
        outcome = CompletionOutcome(**request.model_dump(exclude={'childId'}))
        return listeners.on_activity_completed(request.childId, progress_id, outcome)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error completing activity: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/modules/{module_id}/lessons/{lesson_number}/complete", response_model=EventResult)
async def complete_lesson(module_id: str, lesson_number: int, request: LessonCompleteRequest):
    if lesson_number < 1:
        raise HTTPException(status_code=400, detail="lesson_number must be >= 1")
    try:
        return listeners.on_lesson_completed(
            request.childId, module_id, lesson_number, request.timeSpent, request.score
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error completing lesson: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/modules/{module_id}/quiz", response_model=EventResult)
async def submit_quiz(module_id: str, request: QuizSubmitRequest):
    """Submit an already graded quiz attempt."""
    try:
        result = QuizResult(**request.model_dump(exclude={'childId'}))
        return listeners.on_quiz_submitted(request.childId, module_id, result)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error submitting quiz: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


# ============= CATALOG =============

@router.post("/catalog/content", status_code=status.HTTP_201_CREATED)
async def put_content(item: ContentItemCreate):
    try:
        return dynamo.put_content_item(item.model_dump(exclude_none=True))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error saving content item: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/catalog/achievements", response_model=AchievementDefinition, status_code=status.HTTP_201_CREATED)
async def put_achievement(definition: AchievementDefinition):
    try:
        return dynamo_achievements.put_definition(definition.model_dump())
    except Exception as e:
        logger.error(f"Error saving achievement definition: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
