from __future__ import annotations
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional


@dataclass
class CacheEntry:
	value: Any
	created_at: float = field(default_factory=time.monotonic)


class TTLCache:
	"""Small thread-safe in-memory cache whose entries expire after ``ttl_seconds``."""

	def __init__(self, ttl_seconds: float = 300, *, clock: Callable[[], float] = time.monotonic) -> None:
		self._ttl = ttl_seconds
		self._clock = clock
		self._entries: Dict[str, CacheEntry] = {}
		self._lock = threading.Lock()

	def get(self, key: str) -> Optional[Any]:
		with self._lock:
			entry = self._entries.get(key)
			if entry is None:
				return None
			if self._clock() - entry.created_at >= self._ttl:
				del self._entries[key]
				return None
			return entry.value

	def set(self, key: str, value: Any) -> None:
		with self._lock:
			now = self._clock()
			# Drop expired entries
			for stale in [k for k, e in self._entries.items() if now - e.created_at >= self._ttl]:
				del self._entries[stale]
			self._entries[key] = CacheEntry(value=value, created_at=now)

	def clear(self) -> None:
		with self._lock:
			self._entries.clear()

	def __len__(self) -> int:
		with self._lock:
			return len(self._entries)
