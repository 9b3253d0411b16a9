"""
Runtime configuration for the media transformation function.

Values come from environment variables defined in the deployment template and
are read exactly once, when the execution environment starts. The resulting
:class:`Config` is frozen and handed to the request handler explicitly, so the
core logic can be exercised in tests without touching ``os.environ``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL = "max-age=31622400"
# Lambda caps synchronous response payloads at 6 MB; base64 adds a third.
DEFAULT_MAX_IMAGE_SIZE = 4700000
DEFAULT_METRICS_NAMESPACE = "MediaTransform"


@dataclass(frozen=True)
class Config:
    """Process-wide settings, immutable after cold start."""

    original_bucket: Optional[str]
    transformed_bucket: Optional[str] = None
    cache_ttl: str = DEFAULT_CACHE_TTL
    max_image_size: int = DEFAULT_MAX_IMAGE_SIZE
    metrics_namespace: str = DEFAULT_METRICS_NAMESPACE

    @property
    def cache_enabled(self) -> bool:
        return bool(self.transformed_bucket)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        """Build a :class:`Config` from environment variables.

        Parameters
        ----------
        environ:
            Mapping to read from. Defaults to :data:`os.environ`.

        Returns
        -------
        Config
            The parsed configuration. Invalid ``MAX_IMAGE_SIZE`` values are
            replaced by the default rather than failing the cold start.
        """
        env = os.environ if environ is None else environ
        return cls(
            original_bucket=env.get("ORIGINAL_BUCKET") or None,
            transformed_bucket=env.get("TRANSFORMED_BUCKET") or None,
            cache_ttl=env.get("TRANSFORMED_CACHE_TTL") or DEFAULT_CACHE_TTL,
            max_image_size=_parse_size(env.get("MAX_IMAGE_SIZE")),
            metrics_namespace=env.get("METRICS_NAMESPACE") or DEFAULT_METRICS_NAMESPACE,
        )


def _parse_size(value: Optional[str]) -> int:
    if not value:
        return DEFAULT_MAX_IMAGE_SIZE
    try:
        size = int(value.strip())
    except ValueError:
        logger.warning("Ignoring non-integer MAX_IMAGE_SIZE '%s'", value)
        return DEFAULT_MAX_IMAGE_SIZE
    if size <= 0:
        logger.warning("Ignoring non-positive MAX_IMAGE_SIZE '%s'", value)
        return DEFAULT_MAX_IMAGE_SIZE
    return size
