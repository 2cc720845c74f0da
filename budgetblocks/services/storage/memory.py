"""
In-Memory Storage Implementation

Keeps serialized documents in a dict keyed by storage name, the way a
browser's key/value storage would. Used in tests and for throwaway
sessions. Documents go through the same codec as the file backend, so a
save/load round trip exercises the date reviver.
"""

from typing import Optional

from budgetblocks.config import get_settings
from budgetblocks.models.state import AppState
from budgetblocks.services.storage.codec import decode_document, encode_document
from budgetblocks.services.storage.interface import CorruptStateError, StateStorageInterface


class InMemoryStateStorage(StateStorageInterface):

    def __init__(self, storage_key: Optional[str] = None):
        self.storage_key = storage_key or get_settings().storage.storage_key
        self.items: dict[str, str] = {}
        self.save_count = 0

    def load(self) -> Optional[AppState]:
        text = self.items.get(self.storage_key)
        if not text:
            return None
        try:
            return decode_document(text)
        except (ValueError, RecursionError) as e:
            raise CorruptStateError(f"Stored document '{self.storage_key}' is invalid: {e}")

    def save(self, state: AppState) -> None:
        self.items[self.storage_key] = encode_document(state)
        self.save_count += 1

    def clear(self) -> None:
        self.items.pop(self.storage_key, None)
