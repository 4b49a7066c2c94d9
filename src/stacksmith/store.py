"""JSON file persistence for known stacks.

The file holds one JSON array of stack records for every repository. Records
are keyed by ``(repoOwner, repoName, id)``; per-repo reads and writes leave
other repositories' records alone.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError

from stacksmith.models import Stack

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

DEFAULT_METADATA_PATH = Path(".stacksmith") / "stacks.json"


class StoreError(Exception):
    """Raised when the stack metadata file cannot be read or parsed."""


class StackStore:
    """Known-stack records backed by a single JSON file.

    ``lock`` serializes read-modify-write cycles within one process; hold it
    around ``load_repo`` + ``save_repo`` pairs.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path else DEFAULT_METADATA_PATH
        self.lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"StackStore({str(self.path)!r})"

    def _ensure_file(self) -> None:
        if not self.path.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.save([])
            logger.info("Created stack metadata file %s", self.path)

    def load(self) -> list[Stack]:
        """Read every stored stack, creating an empty file on first use.

        Raises:
            StoreError: If the file is not a JSON array of stack records.
        """
        self._ensure_file()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            msg = f"Corrupt stack metadata in {self.path}: {exc}"
            raise StoreError(msg) from exc
        if not isinstance(data, list):
            msg = f"Corrupt stack metadata in {self.path}: expected a JSON array, got {type(data).__name__}"
            raise StoreError(msg)
        try:
            return [Stack.model_validate(item) for item in data]
        except ValidationError as exc:
            msg = f"Invalid stack record in {self.path}: {exc}"
            raise StoreError(msg) from exc

    def save(self, stacks: Iterable[Stack]) -> None:
        """Replace the whole file atomically (write temp file, then rename)."""
        payload = [stack.model_dump(mode="json", by_alias=True) for stack in stacks]
        text = json.dumps(payload, indent=2) + "\n"
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            Path(tmp_name).replace(self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Saved %d stacks to %s", len(payload), self.path)

    def load_repo(self, owner: str, repo: str) -> list[Stack]:
        """Stored stacks belonging to ``owner/repo``, in file order."""
        return [s for s in self.load() if same_repo(s, owner, repo)]

    def save_repo(self, owner: str, repo: str, stacks: Iterable[Stack]) -> None:
        """Replace ``owner/repo``'s records; other repositories are kept as-is."""
        others = [s for s in self.load() if not same_repo(s, owner, repo)]
        self.save([*others, *stacks])


def same_repo(stack: Stack, owner: str | None, repo: str | None) -> bool:
    """Whether *stack* belongs to ``owner/repo``. GitHub names are case-insensitive."""
    stored = ((stack.repo_owner or "").lower(), (stack.repo_name or "").lower())
    return stored == ((owner or "").lower(), (repo or "").lower())
