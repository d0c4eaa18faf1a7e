"""Background scheduler service for periodic inventory sync."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.exc import SQLAlchemyError

from app.config import AppConfig, get_config
from app.db import AsyncSessionLocal
from app.exceptions import InfraDeckError
from app.services.inventory_reconciler import InventoryReconciler
from app.utils.encryption import get_envelope_cipher

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "inventory_sync"


class SyncScheduler:
    """Run a reconciliation pass on a cron schedule."""

    def __init__(self, config: Optional[AppConfig] = None) -> None:
        self.config = config
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.last_run: Optional[datetime] = None

    async def start(self) -> None:
        """Start the APScheduler if scheduled sync is enabled.

        Raises:
            ValueError: If the configured cron expression is invalid
        """
        config = self.config or get_config()

        if not config.sync_enabled:
            logger.info("Scheduled inventory sync is disabled")
            return

        try:
            trigger = CronTrigger.from_crontab(config.sync_schedule)
        except ValueError as e:
            logger.error(f"Invalid sync schedule '{config.sync_schedule}': {e}")
            raise

        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self._run_sync,
            trigger,
            id=SYNC_JOB_ID,
            name="Proxmox Inventory Sync",
            replace_existing=True,
            max_instances=1,  # Prevent overlapping passes
        )
        self.scheduler.start()
        logger.info(f"Background sync scheduler started with schedule: {config.sync_schedule}")

    async def stop(self) -> None:
        """Shut down the APScheduler."""
        if self.scheduler:
            try:
                self.scheduler.shutdown(wait=False)
                # Give event loop a chance to process shutdown
                await asyncio.sleep(0)
                logger.info("Background sync scheduler stopped")
            except RuntimeError as e:
                logger.error(f"Scheduler shutdown error: {e}")
            self.scheduler = None

    async def _run_sync(self) -> None:
        """Run one pass. Errors are logged, never raised into APScheduler."""
        try:
            async with AsyncSessionLocal() as db:
                reconciler = InventoryReconciler(db, get_envelope_cipher(), config=self.config)
                result = await reconciler.reconcile()
            self.last_run = datetime.now(timezone.utc)
            logger.info(
                f"Scheduled sync finished: {result.synced_count} synced, "
                f"{len(result.failed_nodes)} node(s) skipped"
            )
        except SQLAlchemyError as e:
            logger.error(f"Database error during scheduled sync: {e}")
        except InfraDeckError as e:
            logger.error(f"Scheduled sync failed: {e}")
        except Exception as e:
            logger.error(f"Unexpected error during scheduled sync: {e}", exc_info=True)


sync_scheduler = SyncScheduler()
