"""Atomic file replacement helpers.

Every writer creates a temp file beside the target and renames it over the
final path, so readers only ever observe the old or the new content.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


def _temp_path(path: Path) -> Path:
    # Same directory as the target: os.replace is only atomic within one filesystem.
    return path.with_name(f".{path.name}.tmp.{uuid.uuid4().hex[:8]}")


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` via temp file + rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = _temp_path(path)
    try:
        with open(tmp, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def atomic_write_json(path: Path, obj: Any) -> None:
    """Serialize ``obj`` as indented UTF-8 JSON and write it atomically."""
    payload = json.dumps(obj, indent=2, ensure_ascii=False)
    atomic_write_bytes(path, payload.encode("utf-8"))


def read_json_if_exists(path: Path) -> Any | None:
    """Return parsed JSON, or None when the file does not exist.

    Parse errors propagate; a file vanishing between stat and read is
    treated as absent.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    return json.loads(raw)
