import boto3
import pytest
from moto import mock_aws


@pytest.fixture(autouse=True)
def _s3_settings(settings, monkeypatch):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    settings.AWS_STORAGE_BUCKET_NAME = "rentdesk-test"
    settings.AWS_S3_REGION_NAME = "us-east-1"
    # Moto works best with the default AWS endpoints.
    settings.AWS_S3_ENDPOINT_URL = None
    settings.MEDIA_BASE_URL = ""
    settings.S3_UPLOADS_PREFIX = "uploads/vehicles"
    settings.S3_MAX_UPLOAD_BYTES = 1024 * 1024


@pytest.fixture
def s3_bucket(settings):
    with mock_aws():
        s3 = boto3.client("s3", region_name=settings.AWS_S3_REGION_NAME)
        s3.create_bucket(Bucket=settings.AWS_STORAGE_BUCKET_NAME)
        yield s3
