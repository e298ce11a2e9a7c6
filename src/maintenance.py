"""
Pattern maintenance: periodic jobs plus an on-demand maintenance cycle.

Periodic jobs (defaults):
- cleanup        every 24h
- save           every 1h
- config refresh every 30min
- report         every 6h

The scheduler runs beside extraction sessions against the same PatternStore. start()
spawns one asyncio task per job; stop() sets the cancellation token, waits for the jobs
to finish and performs a final save.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from .adaptive_config import AdaptiveConfigProvider
from .cloud_logging import CloudLoggingClient
from .gcs_utils import upload_file_to_gcs
from .learning.pattern_store import PatternStore
from .models import utc_now

logger = logging.getLogger(__name__)

DEFAULT_INTERVALS = {
    "cleanup": 24 * 3600.0,
    "save": 3600.0,
    "refresh": 30 * 60.0,
    "report": 6 * 3600.0,
}

MAINTENANCE_STEPS = ("analysis", "cleanup", "refresh", "backup", "health")

JobFn = Callable[[], Union[Any, Awaitable[Any]]]


class MaintenanceScheduler:
    def __init__(
        self,
        store: PatternStore,
        provider: Optional[AdaptiveConfigProvider] = None,
        export_dir: Optional[Path] = None,
        gcs_bucket: Optional[str] = None,
        gcs_prefix: str = "pattern_exports",
        cloud_logger: Optional[CloudLoggingClient] = None,
        intervals: Optional[Dict[str, float]] = None,
        uploader: Callable[[str, Path, str], bool] = upload_file_to_gcs,
    ):
        self.store = store
        self.provider = provider
        self.export_dir = Path(export_dir) if export_dir else store.db_path.parent / "exports"
        self.gcs_bucket = gcs_bucket
        self.gcs_prefix = gcs_prefix.strip("/")
        self.cloud_logger = cloud_logger
        self.intervals = {**DEFAULT_INTERVALS, **(intervals or {})}
        self.uploader = uploader

        self._stop = asyncio.Event()
        self._tasks: List[asyncio.Task] = []
        self.runs: Dict[str, int] = {name: 0 for name in self.intervals}
        self.last_report: Optional[Dict[str, Any]] = None

    # region periodic jobs
    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def start(self) -> None:
        """Spawn the periodic jobs on the running loop. Idempotent."""
        if self.running:
            return
        self._stop = asyncio.Event()
        jobs: Dict[str, JobFn] = {
            "cleanup": self.store.cleanup,
            "save": self.store.save_async,
            "refresh": self._refresh,
            "report": self._log_report,
        }
        self._tasks = [
            asyncio.create_task(self._periodic(name, self.intervals[name], fn), name=f"maintenance-{name}")
            for name, fn in jobs.items()
        ]
        logger.info(f"🕒 [Maintenance] Started {len(self._tasks)} periodic jobs")

    async def stop(self) -> None:
        """Signal the jobs to stop, wait for them, then persist once more."""
        self._stop.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        await self.store.save_async()
        logger.info("🛑 [Maintenance] Stopped periodic jobs")

    async def _periodic(self, name: str, interval: float, fn: JobFn) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass
            try:
                outcome = fn()
                if asyncio.iscoroutine(outcome):
                    await outcome
                self.runs[name] += 1
                logger.debug(f"🕒 [Maintenance] Job '{name}' completed")
            except Exception as e:
                logger.error(f"❌ [Maintenance] Job '{name}' failed: {e}")

    def _refresh(self) -> None:
        if self.provider is not None:
            self.provider.refresh()

    def _log_report(self) -> Dict[str, Any]:
        report = self.store.generate_report()
        summary = report["summary"]
        logger.info(
            f"📊 [Maintenance] {summary['totalPatterns']} patterns, "
            f"{summary['targetPatterns']} yield target data, "
            f"overall success {summary['overallSuccessRate']:.1%}"
        )
        for recommendation in report["recommendations"]:
            logger.info(f"💡 [Maintenance] {recommendation['message']}")
        return report
    # endregion

    # region maintenance cycle
    async def run_maintenance(self, skip: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        """Run the full maintenance cycle once and return its report."""
        skipped = set(skip or ())
        started = utc_now()
        report: Dict[str, Any] = {"startedAt": started.isoformat(), "steps": {}, "errors": []}
        logger.info("🔧 [Maintenance] Starting maintenance cycle")

        steps: Dict[str, Callable[[], Awaitable[Any]]] = {
            "analysis": self._step_analysis,
            "cleanup": self._step_cleanup,
            "refresh": self._step_refresh,
            "backup": self._step_backup,
            "health": self._step_health,
        }
        for name in MAINTENANCE_STEPS:
            if name in skipped:
                report["steps"][name] = {"skipped": True}
                continue
            try:
                report["steps"][name] = await steps[name]()
            except Exception as e:
                logger.error(f"❌ [Maintenance] Step '{name}' failed: {e}")
                report["errors"].append({"step": name, "error": str(e)})

        finished = utc_now()
        report["completedAt"] = finished.isoformat()
        report["durationSeconds"] = round((finished - started).total_seconds(), 3)
        report["success"] = not report["errors"]
        self.last_report = report
        if self.cloud_logger is not None:
            self.cloud_logger.log_maintenance_report(report, severity="INFO" if report["success"] else "WARNING")
        logger.info(f"✅ [Maintenance] Cycle finished in {report['durationSeconds']}s ({len(report['errors'])} errors)")
        return report

    async def _step_analysis(self) -> Dict[str, Any]:
        return self._log_report()

    async def _step_cleanup(self) -> Dict[str, Any]:
        removed = self.store.cleanup()
        return {"removed": len(removed), "keys": removed[:20]}

    async def _step_refresh(self) -> Dict[str, Any]:
        self._refresh()
        return {"refreshed": self.provider is not None}

    async def _step_backup(self) -> Dict[str, Any]:
        saved = await self.store.save_async()
        stamp = utc_now().strftime("%Y%m%dT%H%M%S")
        export_path = self.store.export_patterns(self.export_dir / f"api_patterns_export_{stamp}.json")
        config_path = None
        if self.provider is not None:
            config_path = self.provider.export_configurations(self.export_dir / f"adaptive_config_export_{stamp}.json")

        uploaded: List[str] = []
        if self.gcs_bucket:
            loop = asyncio.get_event_loop()
            for path in (export_path, config_path):
                if path is None:
                    continue
                blob = f"{self.gcs_prefix}/{path.name}" if self.gcs_prefix else path.name
                ok = await loop.run_in_executor(None, self.uploader, self.gcs_bucket, path, blob)
                if ok:
                    uploaded.append(f"gs://{self.gcs_bucket}/{blob}")
        return {
            "saved": saved,
            "patternExport": str(export_path) if export_path else None,
            "configExport": str(config_path) if config_path else None,
            "uploaded": uploaded,
        }

    async def _step_health(self) -> Dict[str, Any]:
        health: Dict[str, Any] = {
            "storeAvailable": self.store.is_available,
            "patterns": len(self.store.patterns),
            "stats": dict(self.store.stats),
            "healthy": self.store.is_available and self.store.stats["failed_saves"] == 0,
        }
        if self.provider is not None:
            health["config"] = self.provider.get_system_status()
        return health
    # endregion
