"""
Storage Services Package

Provides the abstract load/save interface, the state document codec and
concrete backends. The JSON file backend is the default; the in-memory
backend is used for tests.
"""

from budgetblocks.services.storage.interface import (
    CorruptStateError,
    StateStorageInterface,
    StorageError,
)
from budgetblocks.services.storage.codec import (
    DOCUMENT_VERSION,
    collection_counts,
    decode_document,
    encode_document,
    migrate_legacy_people,
    state_from_raw,
    state_to_raw,
)
from budgetblocks.services.storage.json_file import JsonFileStateStorage
from budgetblocks.services.storage.memory import InMemoryStateStorage

__all__ = [
    # Interfaces
    "StateStorageInterface",
    # Exceptions
    "CorruptStateError",
    "StorageError",
    # Codec
    "DOCUMENT_VERSION",
    "collection_counts",
    "decode_document",
    "encode_document",
    "migrate_legacy_people",
    "state_from_raw",
    "state_to_raw",
    # Backends
    "InMemoryStateStorage",
    "JsonFileStateStorage",
]
