"""JSON document storage and the write-then-rename primitive.

Every save rewrites the whole document: the payload goes to a sibling
temporary file that then replaces the target, so a crash mid-write never
leaves a truncated file behind.
"""

import json
import os
import pathlib
import tempfile
from typing import Any


def read_json(path: str | os.PathLike, default: Any = None) -> Any:
    """Return the decoded document at *path*, or *default* when it does not exist."""
    p = pathlib.Path(path)
    if not p.exists():
        return default
    with p.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def write_json(path: str | os.PathLike, payload: Any) -> None:
    """Atomically replace *path* with *payload* encoded as indented JSON."""
    p = pathlib.Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=p.parent, prefix=f".{p.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2)
        os.replace(tmp, p)
    except BaseException:
        pathlib.Path(tmp).unlink(missing_ok=True)
        raise
