"""Atomic JSON file writes shared by the JSON-backed stores."""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def read_json(path: Path) -> Any:
    """Load JSON from ``path``; returns None if the file does not exist."""
    if not path.exists():
        return None
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def write_json_atomic(path: Path, data: Any) -> None:
    """Write ``data`` to a temp file in the same directory, then replace ``path``.

    Raises:
        OSError: If the file cannot be written; the temp file is removed first
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = None
    try:
        with tempfile.NamedTemporaryFile("w", dir=path.parent, delete=False, encoding="utf-8") as tf:
            tmp_path = Path(tf.name)
            json.dump(data, tf, ensure_ascii=False, indent=2)
            tf.flush()
            with contextlib.suppress(OSError):
                os.fsync(tf.fileno())
        tmp_path.replace(path)
    except OSError:
        if tmp_path is not None and tmp_path.exists():
            with contextlib.suppress(OSError):
                tmp_path.unlink()
        raise
