"""
JSON File Storage Implementation

DESIGN DECISION: A single JSON document on local disk is the default
backend because:
1. The state is small (personal use)
2. The document is human-readable and easy to back up
3. No database setup required

TRADEOFFS:
- Every save rewrites the whole document (fine at this size)
- No transaction log; a crash between mutation and save loses that mutation

Writes go to a temporary file first and are moved into place, so a crash
mid-write never leaves a truncated document behind.
"""

import os
import tempfile
from pathlib import Path
from typing import Optional, Union

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from budgetblocks.config import get_settings
from budgetblocks.models.state import AppState
from budgetblocks.services.storage.codec import decode_document, encode_document
from budgetblocks.services.storage.interface import (
    CorruptStateError,
    StateStorageInterface,
    StorageError,
)


class JsonFileStateStorage(StateStorageInterface):
    """
    Stores the state document in a JSON file.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None, indent: Optional[int] = None):
        settings = get_settings().storage
        self._path = Path(path or settings.path)
        self._indent = settings.indent if indent is None else indent

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Optional[AppState]:
        """Load and revive the state, or None if the file does not exist."""
        if not self._path.exists():
            return None

        try:
            text = self._path.read_text(encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Failed to read state file {self._path}: {e}")

        if not text.strip():
            return None

        try:
            return decode_document(text)
        except (ValueError, RecursionError) as e:
            # json.JSONDecodeError and pydantic.ValidationError are ValueErrors
            raise CorruptStateError(f"State file {self._path} is not a valid document: {e}")

    def save(self, state: AppState) -> None:
        """Write the full state document."""
        text = encode_document(state, indent=self._indent)
        try:
            self._write(text)
        except OSError as e:
            raise StorageError(f"Failed to write state file {self._path}: {e}")

    @retry(
        retry=retry_if_exception_type(OSError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
        reraise=True,
    )
    def _write(self, text: str) -> None:
        directory = self._path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self._path.name}.", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
            os.replace(tmp_name, self._path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def clear(self) -> None:
        """Delete the state file if present."""
        try:
            self._path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to remove state file {self._path}: {e}")
