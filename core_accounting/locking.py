"""
Per-Document Locking

Serializes mutations of a single invoice or bill (payment application,
finalize, void, line replacement) within one process. Different documents
never block each other. A document's lock lives only while some thread holds
or waits for it, so the table stays as small as the set of busy documents.
"""

import threading
from contextlib import contextmanager
from typing import Dict


class _LockSlot:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


class DocumentLockManager:
    """Hands out one re-entrant lock per busy document id"""

    def __init__(self):
        self._guard = threading.Lock()
        self._slots: Dict[str, _LockSlot] = {}

    @contextmanager
    def hold(self, document_id: str):
        """Hold the document's lock for the duration of the block"""
        with self._guard:
            slot = self._slots.get(document_id)
            if slot is None:
                slot = _LockSlot()
                self._slots[document_id] = slot
            slot.users += 1
        try:
            with slot.lock:
                yield
        finally:
            with self._guard:
                slot.users -= 1
                if slot.users == 0:
                    del self._slots[document_id]

    def is_busy(self, document_id: str) -> bool:
        with self._guard:
            return document_id in self._slots

    def __len__(self) -> int:
        with self._guard:
            return len(self._slots)
