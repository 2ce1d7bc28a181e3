"""Progress checkpoint stores.

The driver only talks to the ``CheckpointStore`` interface, so the JSON file
can be swapped for another backend without touching the batch logic.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

from .errors import CheckpointError
from .models import Checkpoint


class CheckpointStore:
    def load(self) -> Optional[Checkpoint]:
        raise NotImplementedError

    def save(self, checkpoint: Checkpoint) -> None:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError


class JsonCheckpointStore(CheckpointStore):
    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> Optional[Checkpoint]:
        if not self.path.exists():
            return None
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise CheckpointError(f"Unreadable checkpoint {self.path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise CheckpointError(f"Checkpoint {self.path} is not a JSON object")
        try:
            return Checkpoint.from_dict(payload)
        except (TypeError, ValueError) as exc:
            raise CheckpointError(f"Invalid checkpoint {self.path}: {exc}") from exc

    def save(self, checkpoint: Checkpoint) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(json.dumps(checkpoint.to_dict(), indent=2) + "\n", encoding="utf-8")
        os.replace(tmp, self.path)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


class MemoryCheckpointStore(CheckpointStore):
    def __init__(self, checkpoint: Optional[Checkpoint] = None) -> None:
        self.checkpoint = checkpoint
        self.saves = 0

    def load(self) -> Optional[Checkpoint]:
        return self.checkpoint

    def save(self, checkpoint: Checkpoint) -> None:
        self.checkpoint = Checkpoint.from_dict(checkpoint.to_dict())
        self.saves += 1

    def clear(self) -> None:
        self.checkpoint = None
