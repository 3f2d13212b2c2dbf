"""
Sync routes — trigger a partitioned run and inspect its checkpoint.
"""
import dataclasses
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.database import get_db, get_session_factory
from pipeline.config import SyncConfig, load_config
from pipeline.errors import ConfigurationError
from pipeline.ingestion.openaq_client import OpenAQClient
from pipeline.sync.checkpoint import read_checkpoint
from pipeline.sync.job import run_sync

logger = logging.getLogger(__name__)

router = APIRouter()


class SyncRequest(BaseModel):
    offset: Optional[int] = Field(default=None, ge=0)        # None -> resume from checkpoint
    max_sites: Optional[int] = Field(default=None, gt=0)


def get_sync_config() -> SyncConfig:
    """FastAPI dependency — environment config, 503 when incomplete."""
    try:
        return load_config()
    except ConfigurationError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Sync is not configured: {e}",
        )


def _run_sync_task(config: SyncConfig, session_factory) -> None:
    try:
        with OpenAQClient.from_config(config) as client:
            summary = run_sync(config, session_factory, client)
    except Exception as e:
        logger.exception("Background sync %s failed: %s", config.job_id, e)
        return
    logger.info(
        "Background sync %s finished: success=%d failed=%d next_offset=%d",
        config.job_id, summary.totals.successful, summary.totals.failed,
        summary.plan.next_offset,
    )


@router.post("/run", status_code=status.HTTP_202_ACCEPTED)
def trigger_sync(
    background_tasks: BackgroundTasks,
    body: Optional[SyncRequest] = None,
    config: SyncConfig = Depends(get_sync_config),
    session_factory=Depends(get_session_factory),
):
    """
    Start one partitioned sync in the background.

    The optional body overrides the window for this run only.
    """
    overrides = {}
    if body is not None and body.offset is not None:
        overrides["offset"] = body.offset
    if body is not None and body.max_sites is not None:
        overrides["max_sites_per_run"] = body.max_sites
    if overrides:
        config = dataclasses.replace(config, **overrides)

    background_tasks.add_task(_run_sync_task, config, session_factory)
    logger.info("Sync %s queued (offset=%s window=%d)", config.job_id, config.offset, config.max_sites_per_run)
    return {
        "status": "accepted",
        "job_id": config.job_id,
        "offset": config.offset,
        "max_sites_per_run": config.max_sites_per_run,
    }


@router.get("/checkpoint/{job_id}")
def get_checkpoint(job_id: str, db: Session = Depends(get_db)):
    """Progress of a partitioned job, as stored after its last batch."""
    checkpoint = read_checkpoint(db, job_id)
    if checkpoint is None:
        raise HTTPException(status_code=404, detail=f"No checkpoint for job '{job_id}'")
    return checkpoint.to_dict()
