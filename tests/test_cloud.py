"""
Unit tests for the GCS and Cloud Logging helpers (Google clients are mocked).
"""

from unittest.mock import MagicMock, patch

import pytest
from google.cloud.exceptions import NotFound

from src import gcs_utils
from src.cloud_logging import CloudLoggingClient
from src.models import CascadeState, ExtractionGoal, ExtractionResult


@pytest.fixture(autouse=True)
def reset_gcs_client():
    gcs_utils._gcs_client = None
    yield
    gcs_utils._gcs_client = None


@pytest.fixture
def result():
    return ExtractionResult(
        company_id="acme",
        goal=ExtractionGoal.BANNER,
        result_url=None,
        outcome="exhausted",
        states_visited=[CascadeState.OBSERVING, CascadeState.DONE],
    )


class TestGcsUtils:
    def test_upload(self, tmp_path):
        client = MagicMock()
        path = tmp_path / "export.json"
        path.write_text("{}")
        with patch.object(gcs_utils, "get_gcs_client", return_value=client):
            assert gcs_utils.upload_file_to_gcs("bucket", path, "pattern_exports/export.json") is True
        blob = client.bucket.return_value.blob.return_value
        blob.upload_from_filename.assert_called_once_with(str(path))
        assert blob.content_type == "application/json"

    def test_upload_missing_bucket(self, tmp_path):
        client = MagicMock()
        client.bucket.return_value.blob.return_value.upload_from_filename.side_effect = NotFound("no bucket")
        with patch.object(gcs_utils, "get_gcs_client", return_value=client):
            assert gcs_utils.upload_file_to_gcs("bucket", tmp_path / "x.json", "x.json") is False

    def test_no_client(self, tmp_path):
        with patch.object(gcs_utils, "get_gcs_client", return_value=None):
            assert gcs_utils.download_file_from_gcs("bucket", "x.json", tmp_path / "x.json") is False

    def test_client_init_failure(self):
        with patch.object(gcs_utils, "CREDENTIALS_PATH", MagicMock(exists=MagicMock(return_value=False))), \
                patch.object(gcs_utils.storage, "Client", side_effect=RuntimeError("no credentials")):
            assert gcs_utils.get_gcs_client() is None


class TestCloudLogging:
    def test_disabled_by_default(self, monkeypatch, result):
        monkeypatch.delenv("ENABLE_CLOUD_LOGGING", raising=False)
        client = CloudLoggingClient()
        assert client.enabled is False
        assert client.log_extraction_result(result) is False

    def test_enabled_without_project(self, monkeypatch):
        monkeypatch.delenv("PROJECT_ID", raising=False)
        assert CloudLoggingClient(enabled=True).enabled is False

    def test_structured_entry(self, result):
        with patch("src.cloud_logging.cloud_logging.Client") as client_cls:
            client = CloudLoggingClient(enabled=True, project_id="proj")
            assert client.log_extraction_result(result) is True

        cloud_logger = client_cls.return_value.logger.return_value
        args, kwargs = cloud_logger.log_struct.call_args
        assert args[0]["result"]["company_id"] == "acme"
        assert kwargs["severity"] == "WARNING"
        assert kwargs["labels"]["outcome"] == "exhausted"

    def test_send_failure_swallowed(self, result):
        with patch("src.cloud_logging.cloud_logging.Client") as client_cls:
            client_cls.return_value.logger.return_value.log_struct.side_effect = RuntimeError("quota")
            client = CloudLoggingClient(enabled=True, project_id="proj")
            assert client.log_maintenance_report({"success": True}) is False
