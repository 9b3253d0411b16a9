"""
Request path routing and storage key layouts.

Two public path shapes are served:

* ``/files/{userId}/{...path}``: a non-image file, looked up under the
  current user-scoped layout and then under the legacy layouts.
* ``[/images]/{userId}/{...path}/{operations}``: an image to transform. The
  final segment is always the operations suffix, even when it is empty.

Storage keys follow ``users/{userId}/{images|files}/...``; the public CDN
path for the same object is ``/{images|files}/{userId}/...``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

FILES = "files"
IMAGES = "images"

_user_key_re = re.compile(r"^users/(?P<user>[^/]+)/(?P<category>images|files)(?:/(?P<rest>.*))?$")


@dataclass(frozen=True)
class Route:
    """A request path decomposed into its storage coordinates."""

    branch: str
    raw_path: str
    user_id: Optional[str] = None
    object_path: str = ""
    operations_raw: str = ""

    @property
    def image_key(self) -> Optional[str]:
        """Storage key of the original image, ``None`` without a user.

        An empty folder path yields ``users/{userId}/images`` with no
        trailing slash.
        """
        if not self.user_id:
            return None
        parts = ["users", self.user_id, IMAGES]
        if self.object_path:
            parts.append(self.object_path)
        return "/".join(parts)

    @property
    def has_user_layout(self) -> bool:
        return bool(self.user_id and self.object_path)


def _without_leading_slash(path: str) -> str:
    return path[1:] if path.startswith("/") else path


def _without_files_prefix(key: str) -> str:
    return key[len(FILES) + 1:] if key.startswith(FILES + "/") else key


def route(path: str) -> Route:
    """Classify ``path`` and split it into user, object path and operations."""
    if path.startswith("/" + FILES + "/"):
        parts = _without_leading_slash(path).split("/")
        return Route(
            branch=FILES,
            raw_path=path,
            user_id=parts[1] or None,
            object_path="/".join(parts[2:]),
        )

    segments = path.split("/")
    operations_raw = segments.pop()
    if segments and segments[0] == "":
        segments.pop(0)
    if segments and segments[0] == IMAGES:
        segments.pop(0)
    user_id = segments[0] if segments and segments[0] else None
    return Route(
        branch=IMAGES,
        raw_path=path,
        user_id=user_id,
        object_path="/".join(segments[1:]),
        operations_raw=operations_raw,
    )


KeyLayout = Callable[[Route], str]

# Current layout first, then the layouts objects were written under before
# user scoping. Only a missing key moves on to the next entry.
FILE_KEY_LAYOUTS: Sequence[KeyLayout] = (
    lambda r: f"users/{r.user_id}/{FILES}/{r.object_path}",
    lambda r: _without_leading_slash(r.raw_path),
    lambda r: _without_files_prefix(_without_leading_slash(r.raw_path)),
)

LEGACY_FILE_KEY_LAYOUTS: Sequence[KeyLayout] = (
    lambda r: _without_leading_slash(r.raw_path),
    lambda r: _without_files_prefix(_without_leading_slash(r.raw_path)),
)


def file_candidate_keys(r: Route) -> List[str]:
    """Ordered, de-duplicated storage keys to try for a ``/files/`` request."""
    layouts = FILE_KEY_LAYOUTS if r.has_user_layout else LEGACY_FILE_KEY_LAYOUTS
    keys: List[str] = []
    for layout in layouts:
        key = layout(r)
        if key and key not in keys:
            keys.append(key)
    return keys


def cdn_path(storage_key: str) -> str:
    """Map a storage key to its public path.

    ``users/abc/images/folder/cat.jpg`` becomes ``/images/abc/folder/cat.jpg``.
    Keys outside the user layout are returned with a leading slash.
    """
    match = _user_key_re.match(storage_key)
    if not match:
        return "/" + storage_key
    path = f"/{match.group('category')}/{match.group('user')}"
    if match.group("rest"):
        path += "/" + match.group("rest")
    return path
