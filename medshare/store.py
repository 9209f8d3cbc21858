"""
Persistence capability for the ledger state.

The ledger only ever talks to a Store through load() and save(). load()
returns a private copy, so a transition that fails half-way never touches
the stored state.
"""

import os
import logging
from abc import ABC, abstractmethod

from medshare.models import LedgerState

logger = logging.getLogger(__name__)


class Store(ABC):
    @abstractmethod
    def load(self) -> LedgerState:
        """Return a copy of the current state"""

    @abstractmethod
    def save(self, state: LedgerState) -> None:
        """Replace the current state"""


class InMemoryStore(Store):
    def __init__(self, state: LedgerState = None):
        self._state = state or LedgerState()

    def load(self) -> LedgerState:
        return self._state.model_copy(deep=True)

    def save(self, state: LedgerState) -> None:
        self._state = state.model_copy(deep=True)


class JsonFileStore(Store):
    """State kept in a single JSON file, replaced atomically on every save"""

    def __init__(self, path: str):
        self.path = path
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)

    def load(self) -> LedgerState:
        if not os.path.exists(self.path):
            return LedgerState()
        with open(self.path, "r") as f:
            return LedgerState.model_validate_json(f.read())

    def save(self, state: LedgerState) -> None:
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w") as f:
            f.write(state.model_dump_json(indent=2))
        os.replace(tmp_path, self.path)
        logger.debug(f"Saved ledger state to {self.path}")
