"""Celery tasks: daily cleanup of CDN images no vehicle references any more."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Set

from celery import Celery
from celery.schedules import crontab
from sqlalchemy import select

from vendorsync.config import settings
from vendorsync.database import SyncSessionLocal
from vendorsync.images import ImageStore, is_cdn_id
from vendorsync.models import LogLevel, SystemLog, Vehicle

logger = logging.getLogger(__name__)

# ── Celery App ───────────────────────────────────────────────────────────────

celery_app = Celery(
    "vendorsync",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    result_expires=3600,
    beat_schedule={
        "daily-image-cleanup": {
            "task": "vendorsync.tasks.cleanup_orphaned_images",
            "schedule": crontab(hour=settings.IMAGE_CLEANUP_HOUR, minute=0),
        },
    },
)

CLEANUP_SUMMARY_KEY = "image_cleanup:last_run"


def _get_redis():
    """Get a Redis client for storing the last cleanup summary."""
    import redis
    return redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)


def _store_summary(summary: dict):
    try:
        _get_redis().setex(CLEANUP_SUMMARY_KEY, 7 * 24 * 3600, json.dumps(summary))
    except Exception as e:
        logger.warning(f"Failed to store cleanup summary in Redis: {e}")


def find_orphaned_images(stored_ids: Iterable[str], referenced_ids: Set[str], prefix: str) -> List[str]:
    """Ids under our prefix that no vehicle row references."""
    return [
        image_id for image_id in stored_ids
        if image_id.startswith(f"{prefix}-") and image_id not in referenced_ids
    ]


def referenced_image_ids(session) -> Set[str]:
    """Every CDN id stored in vehicles.images."""
    referenced: Set[str] = set()
    for images in session.execute(select(Vehicle.images)).scalars():
        referenced.update(image for image in images or [] if is_cdn_id(image))
    return referenced


async def _delete_orphans(store: ImageStore, referenced: Set[str]) -> dict:
    stored = await store.list_images()
    orphans = find_orphaned_images(stored, referenced, settings.IMAGE_ID_PREFIX)
    deleted, failed = 0, []
    for image_id in orphans:
        try:
            if await store.delete(image_id):
                deleted += 1
        except Exception as e:
            logger.warning(f"Failed to delete orphaned image {image_id}: {e}")
            failed.append(image_id)
    return {"stored": len(stored), "orphaned": len(orphans), "deleted": deleted, "failed": failed}


async def _run_cleanup(referenced: Set[str]) -> dict:
    store = ImageStore()
    try:
        return await _delete_orphans(store, referenced)
    finally:
        await store.aclose()


@celery_app.task(name="vendorsync.tasks.cleanup_orphaned_images")
def cleanup_orphaned_images():
    """Delete CDN images that carry our prefix but belong to no vehicle."""
    if not settings.images_enabled:
        logger.info("Image store not configured, skipping cleanup")
        return {"skipped": True}

    with SyncSessionLocal() as session:
        referenced = referenced_image_ids(session)

    summary = asyncio.run(_run_cleanup(referenced))
    summary["finished_at"] = datetime.now(timezone.utc).isoformat()
    logger.info(
        f"Image cleanup: {summary['deleted']} of {summary['orphaned']} orphaned images deleted "
        f"({summary['stored']} stored)"
    )

    with SyncSessionLocal() as session:
        session.add(SystemLog(
            level=LogLevel.WARNING if summary["failed"] else LogLevel.INFO,
            source="images",
            message=f"Image cleanup deleted {summary['deleted']} orphaned images",
            details=summary,
        ))
        session.commit()

    _store_summary(summary)
    return summary
