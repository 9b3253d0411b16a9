"""Shared fixtures: fake AWS credentials, a moto-backed S3 and image builders."""

from __future__ import annotations

import io
import os

# Must be set before aws_embedded_metrics and boto3 read their configuration.
os.environ.setdefault("AWS_EMF_ENVIRONMENT", "Local")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
os.environ["AWS_SECURITY_TOKEN"] = "testing"
os.environ["AWS_SESSION_TOKEN"] = "testing"

import boto3
import pytest
from moto import mock_aws
from PIL import Image

from media_lambda.config import Config

ORIGINAL_BUCKET = "originals"
TRANSFORMED_BUCKET = "derivatives"


class ContextStub:
    """Minimal stub for the Lambda context object used in tests."""

    def __init__(self, function_name: str = "test-function") -> None:
        self.function_name = function_name


def http_event(path: str, method: str = "GET") -> dict:
    """HTTP API (v2) style event."""
    return {
        "rawPath": path,
        "requestContext": {"http": {"method": method, "path": path}},
    }


@pytest.fixture
def s3():
    with mock_aws():
        client = boto3.client("s3", region_name="us-east-1")
        client.create_bucket(Bucket=ORIGINAL_BUCKET)
        client.create_bucket(Bucket=TRANSFORMED_BUCKET)
        yield client


@pytest.fixture
def config() -> Config:
    return Config(
        original_bucket=ORIGINAL_BUCKET,
        transformed_bucket=TRANSFORMED_BUCKET,
        cache_ttl="max-age=3600",
        max_image_size=10 * 1024 * 1024,
    )


@pytest.fixture
def make_image():
    """Return a builder producing encoded image bytes."""

    def _make(fmt: str = "JPEG", size=(64, 48), color="blue", mode: str = "RGB", **save_kwargs) -> bytes:
        img = Image.new(mode, size, color=color)
        buf = io.BytesIO()
        img.save(buf, format=fmt, **save_kwargs)
        return buf.getvalue()

    return _make


@pytest.fixture
def put_original(s3):
    """Upload an object to the original bucket."""

    def _put(key: str, body: bytes, content_type: str = "image/jpeg") -> None:
        s3.put_object(Bucket=ORIGINAL_BUCKET, Key=key, Body=body, ContentType=content_type)

    return _put
