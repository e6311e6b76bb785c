"""Helpers for reading OpenCode's file-backed record store.

Records live two levels deep: ``<kind>/<group>/<prefix>_<id>.json`` where the
group is a session (messages), a message (parts) or a project (sessions).
"""

import logging
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger("usagepulse")

T = TypeVar("T", bound=BaseModel)


def record_files(directory: Path, prefix: str) -> list[Path]:
    """All ``<prefix>*.json`` files one level below ``directory``, in a stable order.

    A missing or unreadable directory yields an empty list.
    """
    try:
        groups = sorted(p for p in directory.iterdir() if p.is_dir())
    except OSError as e:
        logger.debug("Cannot list %s: %s", directory, e)
        return []

    files: list[Path] = []
    for group in groups:
        try:
            files.extend(sorted(group.glob(f"{prefix}*.json")))
        except OSError as e:
            logger.debug("Cannot list %s: %s", group, e)
    return files


def read_record(path: Path, model: type[T]) -> T | None:
    """Parse one record file, or None if it is unreadable or malformed."""
    try:
        return model.model_validate_json(path.read_bytes())
    except (OSError, ValidationError) as e:
        logger.debug("Skipping %s: %s", path, e)
        return None
