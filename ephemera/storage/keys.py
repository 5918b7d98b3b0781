"""
Object key construction.

Keys have the shape ``uploads/<owner>/<uuid4>-<sanitized name>``. The random
identifier makes collisions practically impossible and the sanitizer keeps
path separators and traversal sequences out of the name segment.
"""
import re
import uuid

KEY_ROOT = "uploads"
MAX_NAME_LENGTH = 200

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_filename(name: str) -> str:
    """
    Strip every character outside ``[A-Za-z0-9._-]``.

    Leading dots are removed as well so the segment can never be ``.`` or
    ``..``. An empty result becomes ``file``.
    """
    safe = _UNSAFE_CHARS.sub("", name or "").lstrip(".")
    safe = safe[-MAX_NAME_LENGTH:]
    return safe or "file"


def owner_segment(owner_id: str) -> str:
    """
    Path segment for an owner id.

    The id is used verbatim so that distinct owners never share a namespace.
    Ids with characters outside ``[A-Za-z0-9._-]`` or a leading dot are
    rejected rather than stripped.
    """
    if not owner_id or _UNSAFE_CHARS.search(owner_id) or owner_id.startswith("."):
        raise ValueError("owner_id must be non-empty, use only [A-Za-z0-9._-] and not start with '.'")
    return owner_id


def owner_prefix(owner_id: str) -> str:
    return f"{KEY_ROOT}/{owner_segment(owner_id)}/"


def build_object_key(owner_id: str, display_name: str) -> str:
    """Generate a fresh, collision-resistant key for an owner's upload."""
    return f"{owner_prefix(owner_id)}{uuid.uuid4()}-{sanitize_filename(display_name)}"


def key_belongs_to(owner_id: str, key: str) -> bool:
    """
    Check that a client-supplied key sits directly in the owner's namespace.
    """
    try:
        prefix = owner_prefix(owner_id)
    except ValueError:
        return False
    if not key or not key.startswith(prefix):
        return False
    remainder = key[len(prefix):]
    return bool(remainder) and "/" not in remainder and not remainder.startswith(".")
