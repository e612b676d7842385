"""In-memory anchor receipt store."""
from __future__ import annotations

from collections import OrderedDict
from typing import Any, Dict, Optional
import threading


class ReceiptStore:
    def __init__(self, max_entries: int = 10000) -> None:
        self.max_entries = max_entries
        self._receipts: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._lock = threading.Lock()

    def put(self, digest: str, receipt: Dict[str, Any]) -> None:
        with self._lock:
            self._receipts.pop(digest, None)
            self._receipts[digest] = dict(receipt)
            while len(self._receipts) > self.max_entries:
                self._receipts.popitem(last=False)

    def get(self, digest: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            receipt = self._receipts.get(digest)
            return dict(receipt) if receipt is not None else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._receipts)
