from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Optional

from chatline.domain.status.repo import get_repository
from chatline.obs import metrics as obs_metrics
from chatline.settings import settings

logger = logging.getLogger(__name__)

PURGE_BATCH_SIZE = 500


async def purge_expired_statuses(now: Optional[datetime] = None, batch_size: int = PURGE_BATCH_SIZE) -> int:
    """Delete statuses past their expiry in batches; returns the number removed."""
    cutoff = now or datetime.now(timezone.utc)
    repo = get_repository()
    total = 0
    while True:
        removed = await repo.purge_expired(cutoff, limit=batch_size)
        total += removed
        if removed < batch_size:
            break
    if total:
        obs_metrics.inc_status_purged(total)
        logger.info("status retention purged count=%d", total)
    return total


async def run_status_purge_loop(interval_seconds: Optional[float] = None) -> None:
    interval = interval_seconds or settings.status_purge_interval_seconds
    while True:
        started = time.perf_counter()
        try:
            await purge_expired_statuses()
        except asyncio.CancelledError:
            raise
        except Exception:
            obs_metrics.record_job_run("status_purge", result="error", duration_seconds=time.perf_counter() - started)
            logger.exception("status retention run failed")
        else:
            obs_metrics.record_job_run("status_purge", result="ok", duration_seconds=time.perf_counter() - started)
        await asyncio.sleep(interval)
