"""Atomic JSON file writes shared by the store, history and snapshot files."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional


def write_json_atomic(path: Path, payload: Any, indent: Optional[int] = None) -> None:
    """Write ``payload`` to a temp file beside ``path`` and swap it in with ``os.replace``.

    Readers see either the previous file or the complete new one. ``OSError``
    propagates to the caller; the temp file is removed on any failure.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=indent)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


__all__ = ["write_json_atomic"]
