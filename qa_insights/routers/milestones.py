"""
Milestones API router.
Provides the milestone progress summary.
"""
import logging
from fastapi import APIRouter, Depends, Path
from sqlalchemy.orm import Session
from fastapi_cache.decorator import cache

from qa_insights.database import get_db
from qa_insights.services import report_service
from qa_insights.models.schemas import MilestoneSummaryResponse
from qa_insights.config import get_settings

logger = logging.getLogger(__name__)
router = APIRouter()
settings = get_settings()


@router.get("/{milestone_id}/summary", response_model=MilestoneSummaryResponse)
@cache(expire=settings.CACHE_TTL_SECONDS if settings.CACHE_ENABLED else 0)
async def get_milestone_summary(
    milestone_id: int = Path(..., ge=1),
    db: Session = Depends(get_db)
):
    """
    Get the progress summary of a milestone.

    Cached for improved performance. Cache duration: configured via CACHE_TTL_SECONDS.

    Args:
        milestone_id: Milestone ID
        db: Database session

    Returns:
        Totals, completion rate and progress bar segments

    Raises:
        HTTPException: If milestone not found
    """
    summary = report_service.milestone_summary(db, milestone_id)
    logger.debug(f"Milestone {milestone_id} summary with {len(summary['segments'])} segments")
    return summary
