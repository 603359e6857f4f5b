"""Old-id to new-id table built while a restore runs."""

import logging
from typing import Dict, Iterator, Optional, Tuple

logger = logging.getLogger(__name__)


class IdRemapper:
    """Maps identifiers from the archive to the ones the target assigned.

    One instance belongs to one restore invocation and is discarded with it.
    """

    def __init__(self):
        self._table: Dict[str, str] = {}

    def record(self, old_id: str, new_id: str) -> None:
        if not old_id or not new_id:
            return
        previous = self._table.get(old_id)
        if previous is not None and previous != new_id:
            logger.debug(f"Remap of {old_id} changed from {previous} to {new_id}")
        self._table[old_id] = new_id

    def resolve(self, old_id: str) -> Optional[str]:
        return self._table.get(old_id)

    def __contains__(self, old_id: str) -> bool:
        return old_id in self._table

    def __len__(self) -> int:
        return len(self._table)

    def items(self) -> Iterator[Tuple[str, str]]:
        return iter(self._table.items())
