"""
Batch run endpoints.
"""
from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query

from episode_audio.routers.dependencies import get_batch_runs, get_stitch_worker
from episode_audio.schemas.episode import DailyStitchResponse
from episode_audio.schemas.lease import DATE_PATTERN
from episode_audio.services.lease_store import BatchRunStore
from episode_audio.services.stitcher import StitchWorker, run_daily_stitch


router = APIRouter(prefix='/batch-runs', tags=['batch-runs'])


@router.post('/daily-stitch', response_model=DailyStitchResponse)
async def daily_stitch(
    run_date: Optional[str] = Query(default=None, pattern=DATE_PATTERN),
    triggered_by: Literal['cron', 'manual'] = Query(default='manual'),
    limit: int = Query(default=1, ge=1, le=30),
    batch_runs: BatchRunStore = Depends(get_batch_runs),
    stitch_worker: StitchWorker = Depends(get_stitch_worker),
) -> DailyStitchResponse:
    """
    Run the daily stitch sweep under its batch run lease.

    Returns claimed=false when another run holds or already completed the day.
    """
    outcome = await run_daily_stitch(
        batch_runs,
        stitch_worker,
        run_date or date.today().isoformat(),
        triggered_by=triggered_by,
        limit=limit,
    )
    if outcome is None:
        return DailyStitchResponse(claimed=False)

    run_id, summary = outcome
    return DailyStitchResponse(
        claimed=True,
        run_id=run_id,
        stitched=summary.stitched,
        skipped=summary.skipped,
        failed=summary.failed,
    )
