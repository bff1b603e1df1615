"""Brain store: load and persist per-agent memory documents.

Brains live as pretty-printed JSON files. A missing file is simply an empty
brain; an unreadable or malformed file raises ``MemoryLoadError`` so the
caller can decide to carry on without memories.
"""

from __future__ import annotations

import asyncio
import json
import re
from pathlib import Path

from pydantic import ValidationError

from .persistence import PersistenceError
from .schemas import Brain

BRAIN_NAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$"


class MemoryLoadError(RuntimeError):
    """Raised when a brain document exists but cannot be read or parsed."""


class BrainPathError(ValueError):
    """Raised when a brain location falls outside the store's base directory."""


class BrainStore:
    """Reads and writes brain documents on the local filesystem.

    With a ``base_dir`` the store is confined: relative locations resolve
    against it and anything that ends up outside it (absolute paths elsewhere,
    ``..`` segments, symlinks out) raises ``BrainPathError``. Without one,
    locations are used as given.
    """

    def __init__(self, base_dir: Path | str | None = None) -> None:
        self.base_dir = Path(base_dir) if base_dir is not None else None

    def resolve(self, location: Path | str) -> Path:
        path = Path(location)
        if self.base_dir is None:
            return path

        root = self.base_dir.resolve()
        resolved = (root / path).resolve()
        if not resolved.is_relative_to(root):
            raise BrainPathError(f"Brain path '{location}' is outside {self.base_dir}")
        return resolved

    def path_for(self, name: str) -> Path:
        """Location of the named brain document (``<name>.json``)."""
        if not re.match(BRAIN_NAME_PATTERN, name):
            raise BrainPathError(f"Invalid brain name '{name}'")
        return self.resolve(f"{name}.json")

    async def load(self, location: Path | str) -> Brain:
        path = self.resolve(location)
        if not await asyncio.to_thread(path.exists):
            return Brain()

        try:
            raw = await asyncio.to_thread(path.read_text, "utf-8")
            return Brain.model_validate_json(raw)
        except (OSError, ValidationError) as exc:
            raise MemoryLoadError(f"Could not load brain from {path}: {exc}") from exc

    async def save(self, location: Path | str, brain: Brain) -> Path:
        path = self.resolve(location)
        payload = json.dumps(brain.to_document(), indent=2)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(payload, "utf-8")

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            raise PersistenceError(f"Could not save brain to {path}: {exc}") from exc
        return path


__all__ = ["BRAIN_NAME_PATTERN", "BrainPathError", "BrainStore", "MemoryLoadError"]
