"""
S3 access for originals and cached derivatives.

All functions take the boto3 client as a parameter so tests can hand in a
moto-backed client. Store failures are translated into the error kinds of
:mod:`errors`: a missing key becomes :class:`ObjectNotFound`, which is the
only failure that lets a lookup move on to its next candidate key.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .errors import CacheWriteFailure, ObjectNotFound, StorageError

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
NOT_FOUND_CODES = frozenset({"NoSuchKey", "404", "NotFound"})


@dataclass(frozen=True)
class StoredObject:
    key: str
    body: bytes
    content_type: Optional[str]


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def get_object(s3_client, bucket: Optional[str], key: str) -> StoredObject:
    """Download ``key`` from ``bucket`` into memory.

    Raises
    ------
    ObjectNotFound
        The key does not exist.
    StorageError
        Any other failure, including a missing bucket name.
    """
    if not bucket:
        raise StorageError("Original bucket is not configured", stage="img-download")
    try:
        resp = s3_client.get_object(Bucket=bucket, Key=key)
        body: bytes = resp["Body"].read()
    except ClientError as exc:
        code = _error_code(exc)
        if code in NOT_FOUND_CODES:
            raise ObjectNotFound(f"No object at {bucket}/{key}") from exc
        raise StorageError(f"S3 error {code} reading {bucket}/{key}", stage="img-download") from exc
    except BotoCoreError as exc:
        raise StorageError(f"S3 error reading {bucket}/{key}: {exc}", stage="img-download") from exc
    logger.info(json.dumps({"action": "downloaded", "bucket": bucket, "key": key, "size": len(body)}))
    return StoredObject(key=key, body=body, content_type=resp.get("ContentType"))


def fetch_first(s3_client, bucket: Optional[str], keys: Iterable[str]) -> StoredObject:
    """Return the first of ``keys`` that exists in ``bucket``.

    Candidates are tried strictly in order. A missing key moves on to the
    next candidate; any other error stops the search immediately.

    Raises
    ------
    ObjectNotFound
        None of the candidates exist.
    StorageError
        A candidate lookup failed for a reason other than a missing key.
    """
    tried = []
    for key in keys:
        try:
            return get_object(s3_client, bucket, key)
        except ObjectNotFound:
            tried.append(key)
            continue
    raise ObjectNotFound(f"No object at any of {tried}")


def put_derivative(
    s3_client,
    bucket: str,
    key: str,
    body: bytes,
    content_type: str,
    cache_control: str,
) -> None:
    """Write a transformed image to the derivative bucket.

    Raises :class:`CacheWriteFailure` on any store error. The write is never
    retried; concurrent writers of the same key simply overwrite each other.
    """
    try:
        s3_client.put_object(
            Bucket=bucket,
            Key=key,
            Body=body,
            ContentType=content_type,
            CacheControl=cache_control,
        )
    except (ClientError, BotoCoreError) as exc:
        raise CacheWriteFailure(f"Failed to upload {bucket}/{key}: {exc}", stage="img-upload") from exc


def derivative_key(original_key: str, operations_raw: str) -> str:
    """Cache key of a derivative: the original key plus the raw operations.

    The operations are not normalized, so reordered options map to
    different entries.
    """
    return original_key + "/" + operations_raw
