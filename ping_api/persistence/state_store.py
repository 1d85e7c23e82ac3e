"""JSON state file holding the durable part of every ledger."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Mapping

from pydantic import ValidationError

from ..core.ledger import LedgerSnapshot
from ..errors import PersistenceReadError, PersistenceWriteError
from .models import PersistedTarget, StateFile

logger = logging.getLogger(__name__)


class StateStore:
    """Load/save contract for ``{"targets": {name: {...}}}`` files."""

    def __init__(self, path: str | os.PathLike) -> None:
        self.path = Path(path)

    def read(self) -> Dict[str, LedgerSnapshot]:
        """Parse the state file.

        A missing or empty file is an empty state. Raises
        ``PersistenceReadError`` for unreadable or invalid content.
        """
        if not self.path.exists():
            return {}

        try:
            content = self.path.read_text(encoding="utf-8").strip()
        except OSError as e:
            raise PersistenceReadError(str(self.path), f"{type(e).__name__}: {e}")

        if not content:
            return {}

        try:
            state = StateFile.model_validate(json.loads(content))
        except json.JSONDecodeError as e:
            raise PersistenceReadError(str(self.path), f"invalid JSON: {e}")
        except ValidationError as e:
            raise PersistenceReadError(str(self.path), f"invalid state: {e.error_count()} errors")

        return {name: target.to_snapshot(name) for name, target in state.targets.items()}

    def load(self) -> Dict[str, LedgerSnapshot]:
        """Like ``read`` but never fails: errors are logged and yield an empty state."""
        try:
            snapshots = self.read()
        except PersistenceReadError as e:
            logger.error("[State] %s; starting with empty state", e)
            return {}

        if snapshots:
            logger.info("[State] loaded %d targets from %s", len(snapshots), self.path)
        return snapshots

    def save(self, snapshots: Mapping[str, LedgerSnapshot]) -> None:
        """Write the whole state atomically (temp file + rename)."""
        state = StateFile(
            targets={name: PersistedTarget.from_snapshot(s) for name, s in snapshots.items()}
        )
        payload = state.model_dump_json(by_alias=True)

        directory = self.path.parent if str(self.path.parent) else Path(".")
        tmp_name = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=directory,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
            raise PersistenceWriteError(str(self.path), f"{type(e).__name__}: {e}")
