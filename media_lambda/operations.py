"""
Parsing of the operations suffix of an image URL.

The last path segment of an image request (``width=100,format=webp``) drives
the transformation. Parsing is deliberately forgiving: unknown keys are
dropped, a token without ``=`` records the key with no value, and an option
with no usable value behaves exactly as if it had not been requested.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

RECOGNIZED_OPERATIONS = frozenset({"width", "height", "format", "quality"})

_leading_int_re = re.compile(r"^\s*([+-]?\d+)")


def parse_signed_int(value: Optional[str]) -> Optional[int]:
    """Parse the leading integer of ``value``; ``"100px"`` gives ``100``."""
    if not value:
        return None
    match = _leading_int_re.match(value)
    if not match:
        return None
    return int(match.group(1))


def parse_int(value: Optional[str]) -> Optional[int]:
    """Like :func:`parse_signed_int` but ``None`` unless positive.

    ``width=0`` or ``width=abc`` leave the width unset.
    """
    number = parse_signed_int(value)
    return number if number is not None and number > 0 else None


@dataclass(frozen=True)
class OperationSet:
    """Recognized operations of one request, with optional values.

    ``raw`` keeps the suffix exactly as it appeared in the URL. It is the
    source of the derivative cache key and of the redirect query string, so
    two orderings of the same options stay distinct.
    """

    raw: str = ""
    values: Mapping[str, Optional[str]] = field(default_factory=lambda: MappingProxyType({}))

    def get(self, name: str) -> Optional[str]:
        """Return the value of ``name``, or ``None`` if absent or empty."""
        value = self.values.get(name)
        return value or None

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get(name) is not None

    @property
    def width(self) -> Optional[int]:
        return parse_int(self.get("width"))

    @property
    def height(self) -> Optional[int]:
        return parse_int(self.get("height"))

    @property
    def format(self) -> Optional[str]:
        return self.get("format")

    @property
    def quality(self) -> Optional[int]:
        """Zero and negative values are kept so the encoder can reject them."""
        return parse_signed_int(self.get("quality"))

    @property
    def query_string(self) -> str:
        """The raw suffix rewritten as a URL query string."""
        return self.raw.replace(",", "&")


def parse_operations(raw: str) -> OperationSet:
    """Parse a comma separated ``key=value`` list into an :class:`OperationSet`.

    Parameters
    ----------
    raw:
        The operations segment, possibly empty.

    Returns
    -------
    OperationSet
        Never raises. Tokens split on the first ``=``; a token with no ``=``
        maps its key to ``None``; later duplicates win.
    """
    values = {}
    for token in raw.split(","):
        key, sep, value = token.partition("=")
        if key not in RECOGNIZED_OPERATIONS:
            continue
        values[key] = value if sep else None
    return OperationSet(raw=raw, values=MappingProxyType(values))
