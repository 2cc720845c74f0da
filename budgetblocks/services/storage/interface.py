"""
Abstract Storage Interface

DESIGN DECISION: The core only needs two things from persistence:
load the whole state, and save the whole state. The medium is irrelevant.
This allows us to:
1. Keep state in a JSON file for a local install
2. Use in-memory storage for testing
3. Swap in any other document store later without touching the store

The interface is intentionally tiny - the state is one document.
"""

from abc import ABC, abstractmethod
from typing import Optional

from budgetblocks.models.state import AppState


class StateStorageInterface(ABC):
    """
    Abstract interface for state persistence.

    Any storage implementation must implement these methods.
    """

    @abstractmethod
    def load(self) -> Optional[AppState]:
        """
        Load the persisted state.

        Returns:
            The revived state, or None if nothing has been saved yet

        Raises:
            CorruptStateError: If the stored document cannot be parsed
            StorageError: If the medium cannot be read
        """
        pass

    @abstractmethod
    def save(self, state: AppState) -> None:
        """
        Persist the full state, replacing what was stored before.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove the persisted state entirely."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class CorruptStateError(StorageError):
    """The stored document exists but cannot be parsed or revived."""
    pass
