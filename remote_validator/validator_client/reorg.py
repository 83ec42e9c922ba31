"""
Recording of the chain reorganizations a beacon node reports.

Every notification becomes one ``ReorgEvent`` appended to an ordered log. The
log is never deduplicated: two structurally identical events are two separate
observations of a reorg, which is meaningful on its own even if the resulting
head did not change.
"""
from dataclasses import dataclass
import logging
import threading
from typing import Callable, List, Tuple

from eth_utils import ValidationError, humanize_hash

from remote_validator.typing import Root, Slot


@dataclass(eq=True, frozen=True)
class ReorgEvent:
    best_block_root: Root
    best_slot: Slot
    common_ancestor_slot: Slot

    def __repr__(self) -> str:
        return (
            f"ReorgEvent(best_block_root={humanize_hash(self.best_block_root)},"
            f" best_slot={self.best_slot},"
            f" common_ancestor_slot={self.common_ancestor_slot})"
        )


ReorgListener = Callable[[ReorgEvent], None]


class ReorgEventTracker:
    logger = logging.getLogger("remote_validator.validator_client.reorg.ReorgEventTracker")

    def __init__(self) -> None:
        self._events: List[ReorgEvent] = []
        self._listeners: List[ReorgListener] = []
        # single writer; also taken to copy out a consistent snapshot
        self._lock = threading.Lock()

    def subscribe(self, listener: ReorgListener) -> None:
        """
        Register ``listener`` to be called synchronously with every event
        recorded from now on, in the order of registration.
        """
        with self._lock:
            self._listeners.append(listener)

    def record_reorg(
        self, best_block_root: Root, best_slot: Slot, common_ancestor_slot: Slot
    ) -> ReorgEvent:
        if common_ancestor_slot > best_slot:
            raise ValidationError(
                f"common ancestor slot {common_ancestor_slot} of a reorg cannot be"
                f" after its best slot {best_slot}"
            )
        event = ReorgEvent(best_block_root, best_slot, common_ancestor_slot)
        with self._lock:
            self._events.append(event)
            listeners = tuple(self._listeners)

        self.logger.info("recorded %s", event)
        for listener in listeners:
            listener(event)
        return event

    def list_reorg_events(self) -> Tuple[ReorgEvent, ...]:
        with self._lock:
            return tuple(self._events)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
