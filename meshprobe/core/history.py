"""
Bounded history of the measurements run in this session.
"""

import re
import threading
from collections import deque
from typing import Iterator, List, Optional, Union

from loguru import logger

from meshprobe.core.errors import NoSuchSessionReference
from meshprobe.core.models import ProbeDetails, SessionRecord

HISTORY_CAPACITY = 10

_INDEX_RE = re.compile(r"^@(-?\d+)$")
_ALIASES = {
    "first": 1,
    "last": -1,
    "previous": -1,
}


def parse_session_reference(ref: str) -> Optional[int]:
    """
    Parse a symbolic session reference into a signed 1-based index.

    Returns:
        The index (``first`` -> 1, ``last``/``previous`` -> -1, ``@N`` -> N),
        or None if ``ref`` is not a session reference at all.
    """
    token = ref.strip().lower()
    if token in _ALIASES:
        return _ALIASES[token]
    match = _INDEX_RE.match(token)
    if match:
        return int(match.group(1))
    return None


class SessionHistory:
    """Ring buffer of SessionRecord, oldest first."""

    def __init__(self, capacity: int = HISTORY_CAPACITY):
        self.capacity = capacity
        self._records: deque = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[SessionRecord]:
        return iter(list(self._records))

    def append(self, record: SessionRecord) -> None:
        """Append a record, evicting the oldest one when full."""
        with self._lock:
            if len(self._records) == self.capacity:
                logger.debug(f"Session history full, evicting {self._records[0].id}")
            self._records.append(record)
        logger.debug(f"Recorded measurement {record.id} with {len(record.probes)} probes")

    def get(self, ref: Union[int, str]) -> SessionRecord:
        """Return the record referenced by ``ref`` (``@N``, ``last``, 2, -1, ...)."""
        index = ref if isinstance(ref, int) else parse_session_reference(ref)
        if index is None:
            raise NoSuchSessionReference(f"invalid session reference: {ref}")

        records = list(self._records)
        size = len(records)
        if index == 0 or index > size or -index > size:
            if size == 0:
                raise NoSuchSessionReference(
                    f"no measurement for {ref}: the session history is empty"
                )
            raise NoSuchSessionReference(
                f"no measurement for {ref}: the session holds {size} measurement(s)"
            )
        return records[index - 1] if index > 0 else records[index]

    def resolve(self, ref: Union[int, str]) -> List[ProbeDetails]:
        """Return the probes of the referenced record."""
        return list(self.get(ref).probes)

    def find(self, measurement_id: str) -> Optional[SessionRecord]:
        for record in reversed(self._records):
            if record.id == measurement_id:
                return record
        return None
