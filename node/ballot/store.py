# durable state: in-memory or JSON file
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

import structlog

from .models import BallotState

log = structlog.get_logger(__name__)


class StateStore(ABC):
    """
    Where the engine keeps its state between calls.
    load() returns None when nothing was saved yet.
    """

    @abstractmethod
    def load(self) -> Optional[BallotState]:
        ...

    @abstractmethod
    def save(self, state: BallotState) -> None:
        ...


class MemoryStore(StateStore):
    """
    Keeps a serialized copy so callers can't alias the saved state.
    """

    def __init__(self) -> None:
        self._data: Optional[str] = None

    def load(self) -> Optional[BallotState]:
        if self._data is None:
            return None
        return BallotState.model_validate_json(self._data)

    def save(self, state: BallotState) -> None:
        self._data = state.model_dump_json()


class JsonFileStore(StateStore):
    """
    One JSON document per ballot. Writes go to a temp file in the same
    directory which then replaces the target, so readers only ever see a
    complete document.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def load(self) -> Optional[BallotState]:
        if not self.path.exists():
            return None
        state = BallotState.model_validate_json(self.path.read_text(encoding="utf-8"))
        log.info("state_loaded", path=str(self.path), status=state.status.value)
        return state

    def save(self, state: BallotState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        serialized = state.model_dump_json(indent=2)

        temp_path: Optional[Path] = None
        try:
            with tempfile.NamedTemporaryFile(
                "w", dir=self.path.parent, delete=False, encoding="utf-8"
            ) as tmp:
                temp_path = Path(tmp.name)
                tmp.write(serialized)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(temp_path, self.path)
        except BaseException:
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)
            raise


def store_from_path(path: str) -> StateStore:
    if not path:
        return MemoryStore()
    return JsonFileStore(path)
