"""
GCS helpers for shipping pattern and configuration exports off the machine.

Uploads are best effort: every helper logs and returns False/None on failure.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from google.cloud import storage
from google.cloud.exceptions import NotFound
from google.oauth2 import service_account

logger = logging.getLogger(__name__)

CREDENTIALS_PATH = Path(__file__).parent.parent / "config" / "gcp.json"

# One client per process, built on first use
_gcs_client: Optional[storage.Client] = None


def get_gcs_client() -> Optional[storage.Client]:
    """
    Storage client from config/gcp.json when present, else Application Default Credentials.

    Returns:
        storage.Client, or None when no client can be built
    """
    global _gcs_client
    if _gcs_client is None:
        project_id = os.getenv("PROJECT_ID")
        try:
            if CREDENTIALS_PATH.exists():
                credentials = service_account.Credentials.from_service_account_file(str(CREDENTIALS_PATH))
                _gcs_client = storage.Client(project=project_id, credentials=credentials)
            else:
                _gcs_client = storage.Client(project=project_id)
            logger.info(f"✅ [GCS] Storage client ready for project {project_id or '(default)'}")
        except Exception as e:
            logger.error(f"❌ [GCS] No storage client, exports stay local: {e}")
    return _gcs_client


def upload_file_to_gcs(
    bucket_name: str,
    local_file_path: Path,
    gcs_blob_path: str,
    content_type: Optional[str] = "application/json",
) -> bool:
    """
    Upload a local file.

    Args:
        bucket_name: Name of the GCS bucket
        local_file_path: File to upload
        gcs_blob_path: Destination path in the bucket (e.g. 'pattern_exports/api_patterns_export.json')
        content_type: Optional content type

    Returns:
        bool: True if successful, False otherwise
    """
    client = get_gcs_client()
    if client is None:
        return False
    try:
        blob = client.bucket(bucket_name).blob(gcs_blob_path)
        if content_type:
            blob.content_type = content_type
        blob.upload_from_filename(str(local_file_path))
        logger.info(f"☁️  [GCS] Uploaded {local_file_path} to gs://{bucket_name}/{gcs_blob_path}")
        return True
    except NotFound:
        logger.error(f"❌ [GCS] Bucket not found: {bucket_name}")
        return False
    except Exception as e:
        logger.error(f"❌ [GCS] Upload failed for {local_file_path}: {e}")
        return False


def download_file_from_gcs(bucket_name: str, gcs_blob_path: str, local_file_path: Path) -> bool:
    """Download one blob, e.g. a pattern export to seed a fresh machine."""
    client = get_gcs_client()
    if client is None:
        return False
    try:
        local_file_path = Path(local_file_path)
        local_file_path.parent.mkdir(parents=True, exist_ok=True)
        client.bucket(bucket_name).blob(gcs_blob_path).download_to_filename(str(local_file_path))
        logger.info(f"☁️  [GCS] Downloaded gs://{bucket_name}/{gcs_blob_path} to {local_file_path}")
        return True
    except NotFound:
        logger.warning(f"⚠️  [GCS] gs://{bucket_name}/{gcs_blob_path} not found")
        return False
    except Exception as e:
        logger.error(f"❌ [GCS] Download failed for gs://{bucket_name}/{gcs_blob_path}: {e}")
        return False
