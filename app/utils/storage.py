from google.cloud import storage as gcs_storage
from app.config import get_settings

def get_storage_client():
    return gcs_storage.Client(project=get_settings().GCP_PROJECT_ID or None)

def get_bucket():
    client = get_storage_client()
    return client.bucket(get_settings().GCS_BUCKET_NAME)

def public_url(path: str) -> str:
    """Publicly resolvable URL of an object in the avatar bucket."""
    settings = get_settings()
    base = settings.PUBLIC_STORAGE_BASE_URL.rstrip("/")
    return f"{base}/{settings.GCS_BUCKET_NAME}/{path}"

def upload_file(path: str, file_bytes: bytes, content_type: str = "application/octet-stream") -> str:
    """Upload file to GCS bucket. Returns the public URL."""
    bucket = get_bucket()
    blob = bucket.blob(path)
    blob.cache_control = "public, max-age=3600"
    blob.upload_from_string(file_bytes, content_type=content_type)
    return public_url(path)

