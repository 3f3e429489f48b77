"""
Worker Scheduler Configuration

Registers and schedules background workers for Tiendanube bulk sync and webhook replay.
"""

import logging
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional

from app.config import settings
from app.workers.tiendanube_sync_worker import run_tiendanube_sync_worker
from app.workers.webhook_replay_worker import run_webhook_replay_worker

logger = logging.getLogger(__name__)

TICK_SECONDS = 30


class WorkerScheduler:
    """Scheduler for running background workers at specified intervals."""

    def __init__(self):
        self.workers = {
            "tiendanube_sync": {
                "func": run_tiendanube_sync_worker,
                "interval": settings.SYNC_INTERVAL_SEC,
                "last_run": None,
                "enabled": settings.SYNC_INTERVAL_SEC > 0,
            },
            "webhook_replay": {
                "func": run_webhook_replay_worker,
                "interval": settings.REPLAY_INTERVAL_SEC,
                "last_run": None,
                "enabled": settings.REPLAY_INTERVAL_SEC > 0,
            },
        }
        self.running = False
        self._task: Optional[asyncio.Task] = None

    async def run_worker(self, worker_name: str, worker_config: Dict[str, Any]) -> Dict[str, Any]:
        """Run a single worker and log results. Never raises."""
        worker_config["last_run"] = datetime.now(timezone.utc)
        try:
            logger.info("Starting worker: %s", worker_name)
            result = await worker_config["func"]()
            if result.get("success", False):
                logger.info("Worker %s completed: %s", worker_name, result.get("message", "No message"))
            else:
                logger.error("Worker %s finished with errors: %s", worker_name, result.get("message", "Unknown error"))
            return result
        except Exception as e:
            logger.exception("Worker %s crashed: %s", worker_name, e)
            return {
                "success": False,
                "message": f"Worker crashed: {str(e)}",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

    async def start_scheduler(self):
        """Run due workers sequentially until stopped."""
        self.running = True
        logger.info("🚀 Worker scheduler started")
        while self.running:
            current_time = datetime.now(timezone.utc)
            for worker_name, worker_config in self.workers.items():
                if not worker_config["enabled"]:
                    continue
                last_run = worker_config["last_run"]
                if last_run is None or (current_time - last_run).total_seconds() >= worker_config["interval"]:
                    await self.run_worker(worker_name, worker_config)
            await asyncio.sleep(TICK_SECONDS)

    def stop_scheduler(self):
        self.running = False
        if self._task and not self._task.done():
            self._task.cancel()
        logger.info("⏹️ Worker scheduler stopped")

    def get_worker_status(self) -> Dict[str, Any]:
        """Get current status of all workers."""
        status = {}
        for worker_name, worker_config in self.workers.items():
            last_run = worker_config["last_run"]
            next_run = last_run + timedelta(seconds=worker_config["interval"]) if last_run else None
            status[worker_name] = {
                "enabled": worker_config["enabled"],
                "last_run": last_run.isoformat() if last_run else None,
                "next_run": next_run.isoformat() if next_run else None,
                "interval_seconds": worker_config["interval"],
                "status": "running" if self.running else "stopped",
            }
        return status


# Global scheduler instance
scheduler = WorkerScheduler()


def start_background_workers():
    """Start the background worker scheduler (no-op if every worker is disabled)."""
    if not any(w["enabled"] for w in scheduler.workers.values()):
        logger.info("Background workers disabled")
        return
    scheduler._task = asyncio.create_task(scheduler.start_scheduler())
    logger.info("✅ Background workers started")


def stop_background_workers():
    scheduler.stop_scheduler()


def get_workers_status() -> Dict[str, Any]:
    return scheduler.get_worker_status()
