"""
AWS Lambda entrypoint for the user media transformation function.

The function sits behind a CDN and is invoked for every cache miss with an
HTTP GET. Two kinds of request are served:

``/files/{userId}/...``
    Non-image files are streamed back untouched. The object is looked up
    under the current user-scoped key first and under legacy layouts after
    that, so objects uploaded before user scoping keep working.

``[/images]/{userId}/.../{operations}``
    The original image is downloaded from the original bucket, transformed
    according to the operations suffix (see :mod:`operations` and
    :mod:`image_utils`) and returned inline. When a transformed bucket is
    configured the result is cached there as well, and outputs larger than
    ``MAX_IMAGE_SIZE`` are served through a redirect to the cached copy.

Every failure is converted into a short status/message response here; full
details only go to the structured log. Metrics are published with the
aws-embedded-metrics SDK.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Tuple

import boto3
from aws_embedded_metrics import metric_scope

from . import storage
from .config import Config
from .errors import CacheWriteFailure, MediaError, MethodNotAllowed, ObjectNotFound, SizeLimitExceeded
from .image_utils import TransformedArtifact, transform_image
from .operations import OperationSet, parse_operations
from .paths import FILES, Route, cdn_path, file_candidate_keys, route
from .responses import FILE_CACHE_CONTROL, TimingLog, binary_response, error_response, redirect_response

# Structured logging: every payload is a JSON document so Logs Insights can
# parse it into fields.
logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

# Created once per execution environment and reused across invocations.
s3_client = boto3.client("s3")

# Read-only for the lifetime of the process.
CONFIG = Config.from_env()


@metric_scope
def lambda_handler(event: Dict[str, Any], context: Any, metrics):  # noqa: D401
    """Serve one HTTP request.

    Parameters
    ----------
    event:
        API Gateway HTTP API (or function URL) event. REST API style events
        are accepted as well.
    context:
        Lambda context object providing runtime metadata.
    metrics:
        Provided by aws-embedded-metrics via the ``@metric_scope`` decorator.

    Returns
    -------
    dict
        A Lambda proxy response.
    """
    metrics.set_namespace(CONFIG.metrics_namespace)
    metrics.put_dimensions({"FunctionName": getattr(context, "function_name", "unknown")})

    response = handle_request(event, CONFIG, s3_client, metrics=metrics)
    metrics.put_metric(f"status_{response['statusCode']}", 1, "Count")
    return response


def _extract(event: Dict[str, Any]) -> Tuple[str, Optional[str]]:
    """Return the request path and HTTP method of ``event``."""
    http = (event.get("requestContext") or {}).get("http") or {}
    path = http.get("path") or event.get("rawPath") or event.get("path") or "/"
    method = http.get("method") or event.get("httpMethod")
    return path, method


def _put_metric(metrics, name: str, value: float, unit: str) -> None:
    if metrics is not None:
        metrics.put_metric(name, value, unit)


def handle_request(event: Dict[str, Any], config: Config, s3, metrics=None) -> Dict[str, Any]:
    """Route ``event`` and turn the outcome into a proxy response.

    No exception escapes this function: known failure kinds map to their
    status codes and anything unexpected becomes a generic 500.
    """
    path, method = _extract(event)
    try:
        if method != "GET":
            raise MethodNotAllowed(f"Rejected {method} request")
        request = route(path)
        logger.info(json.dumps({"action": "start", "branch": request.branch, "path": path}))
        if request.branch == FILES:
            return serve_file(request, config, s3)
        return serve_image(request, config, s3, metrics)
    except MediaError as error:
        return error_response(error, path=path, method=method)
    except Exception as exc:
        error = MediaError(f"Unhandled {type(exc).__name__}: {exc}")
        error.__cause__ = exc
        return error_response(error, path=path, method=method)


def serve_file(request: Route, config: Config, s3) -> Dict[str, Any]:
    """Return the first existing object among the request's candidate keys."""
    found = storage.fetch_first(s3, config.original_bucket, file_candidate_keys(request))
    logger.info(json.dumps({"action": "complete", "key": found.key, "size": len(found.body)}))
    return binary_response(
        found.body,
        found.content_type or storage.DEFAULT_CONTENT_TYPE,
        FILE_CACHE_CONTROL,
    )


def serve_image(request: Route, config: Config, s3, metrics=None) -> Dict[str, Any]:
    """Download, transform and deliver one image."""
    key = request.image_key
    if key is None:
        raise ObjectNotFound(f"Image path {request.raw_path} names no user")
    operations = parse_operations(request.operations_raw)

    timing = TimingLog()
    original = storage.get_object(s3, config.original_bucket, key)
    timing.record("img-download")

    artifact = transform_image(original.body, original.content_type, operations)
    duration_ms = timing.record("img-transform")

    _put_metric(metrics, "input_size_bytes", len(original.body), "Bytes")
    _put_metric(metrics, "output_size_bytes", artifact.size, "Bytes")
    _put_metric(metrics, "transform_duration_ms", duration_ms, "Milliseconds")
    logger.info(
        json.dumps(
            {
                "action": "transformed",
                "key": key,
                "operations": operations.raw,
                "content_type": artifact.content_type,
                "size": artifact.size,
            }
        )
    )
    return deliver(artifact, key, operations, config, s3, timing, metrics)


def deliver(
    artifact: TransformedArtifact,
    key: str,
    operations: OperationSet,
    config: Config,
    s3,
    timing: TimingLog,
    metrics=None,
) -> Dict[str, Any]:
    """Cache the artifact if configured and choose inline, redirect or 403.

    The size decision is made before the upload. A failed upload is logged
    and otherwise ignored; without a successful upload an oversized artifact
    cannot be redirected to and is refused.
    """
    too_big = artifact.size > config.max_image_size
    cached = False

    if config.cache_enabled:
        cache_key = storage.derivative_key(key, operations.raw)
        timing.restart()
        try:
            storage.put_derivative(
                s3,
                config.transformed_bucket,
                cache_key,
                artifact.body,
                artifact.content_type,
                config.cache_ttl,
            )
        except CacheWriteFailure as error:
            _put_metric(metrics, "cache_write_failures", 1, "Count")
            logger.error(
                json.dumps({"action": "cache_write_failed", "key": cache_key, "detail": error.detail}),
                exc_info=error.__cause__,
            )
        else:
            timing.record("img-upload")
            cached = True

    if too_big:
        if cached:
            _put_metric(metrics, "redirects", 1, "Count")
            return redirect_response(cdn_path(key) + "?" + operations.query_string, timing)
        raise SizeLimitExceeded(f"{artifact.size} bytes exceeds limit of {config.max_image_size}")

    return binary_response(artifact.body, artifact.content_type, config.cache_ttl, timing)
