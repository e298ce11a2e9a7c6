"""
Google Cloud Logging export for extraction results.

Ships one structured entry per cascade run (and per maintenance cycle) to Cloud Logging.
Off unless ENABLE_CLOUD_LOGGING=true and PROJECT_ID are set. Export problems are logged
locally and reported as False, never raised.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from google.cloud import logging as cloud_logging
from google.oauth2 import service_account

from .models import ExtractionResult, ExtractionSummary

logger = logging.getLogger(__name__)

CREDENTIALS_PATH = Path(__file__).resolve().parents[1] / "config" / "gcp.json"


class CloudLoggingClient:
    """Structured-entry sink for extraction outcomes."""

    def __init__(self, enabled: Optional[bool] = None, project_id: Optional[str] = None,
                 log_name: str = "adaptive_extraction"):
        self.project_id = project_id or os.getenv("PROJECT_ID")
        self.log_name = log_name
        self.cloud_logger: Optional[Any] = None

        if enabled is None:
            enabled = os.getenv("ENABLE_CLOUD_LOGGING", "false").lower() == "true"
        if not enabled:
            logger.debug("☁️  [Cloud Logging] Export off (ENABLE_CLOUD_LOGGING is not 'true')")
        elif not self.project_id:
            logger.warning("⚠️  [Cloud Logging] PROJECT_ID not set, export off")
        else:
            self.cloud_logger = self._connect()

    @property
    def enabled(self) -> bool:
        return self.cloud_logger is not None

    def _connect(self) -> Optional[Any]:
        try:
            if CREDENTIALS_PATH.exists():
                credentials = service_account.Credentials.from_service_account_file(str(CREDENTIALS_PATH))
                client = cloud_logging.Client(project=self.project_id, credentials=credentials)
                source = str(CREDENTIALS_PATH)
            else:
                client = cloud_logging.Client(project=self.project_id)
                source = "application default credentials"
        except Exception as e:
            logger.error(f"❌ [Cloud Logging] Could not create client for {self.project_id}: {e}")
            return None
        logger.info(f"✅ [Cloud Logging] Exporting to {self.project_id}/{self.log_name} ({source})")
        return client.logger(self.log_name)

    def log_extraction_result(
        self,
        result: ExtractionResult,
        summary: Optional[ExtractionSummary] = None,
        severity: Optional[str] = None,
    ) -> bool:
        """
        Export one cascade outcome.

        Args:
            result: ExtractionResult of the run
            summary: Optional session diagnostics to attach
            severity: Defaults to INFO on success, WARNING when exhausted

        Returns:
            True when the entry was written
        """
        payload: Dict[str, Any] = {"result": result.model_dump(mode="json")}
        if summary is not None:
            payload["summary"] = summary.model_dump(mode="json")
        labels = {
            "component": "extraction_cascade",
            "company_id": result.company_id,
            "goal": result.goal.value,
            "outcome": result.outcome,
            "strategy": result.winning_strategy or "none",
        }
        return self._write(payload, severity or ("INFO" if result.result_url else "WARNING"), labels)

    def log_maintenance_report(self, report: Dict[str, Any], severity: str = "INFO") -> bool:
        return self._write(report, severity, {"component": "pattern_maintenance"})

    def _write(self, payload: Dict[str, Any], severity: str, labels: Dict[str, str]) -> bool:
        if self.cloud_logger is None:
            return False
        try:
            self.cloud_logger.log_struct(payload, severity=severity, labels=labels)
            return True
        except Exception as e:
            logger.error(f"❌ [Cloud Logging] Could not write {labels['component']} entry: {e}")
            return False
