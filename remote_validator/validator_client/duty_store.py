import logging
from typing import Awaitable, Callable, Dict, Optional, Tuple

from eth_typing import BLSPubkey
import trio

from remote_validator._utils.humanize import humanize_bytes
from remote_validator.typing import Epoch
from remote_validator.validator_client.duty import ValidatorDuties

DutyKey = Tuple[BLSPubkey, Epoch]

DutyFetcher = Callable[[], Awaitable[Optional[ValidatorDuties]]]


class DutyStore:
    """
    Caches the duties of each validator per epoch.

    ``None`` is a valid cached value: the validator has nothing to do in that epoch.
    Entries are immutable and only ever replaced or dropped as a whole. Concurrent
    lookups of the same key share a single fetch.
    """

    logger = logging.getLogger("remote_validator.validator_client.duty_store.DutyStore")

    def __init__(self) -> None:
        self._store: Dict[DutyKey, Optional[ValidatorDuties]] = {}
        self._fetch_locks: Dict[DutyKey, trio.Lock] = {}
        # keys with a fetch in flight, mapped to whether an invalidation covered them since
        self._fetches_in_flight: Dict[DutyKey, bool] = {}

    def __len__(self) -> int:
        return len(self._store)

    def is_cached(self, public_key: BLSPubkey, epoch: Epoch) -> bool:
        return (public_key, epoch) in self._store

    def get(self, public_key: BLSPubkey, epoch: Epoch) -> Optional[ValidatorDuties]:
        """
        Raise ``KeyError`` if nothing is cached for ``public_key`` in ``epoch``.
        """
        return self._store[(public_key, epoch)]

    async def get_or_fetch(
        self, public_key: BLSPubkey, epoch: Epoch, fetch: DutyFetcher
    ) -> Optional[ValidatorDuties]:
        key = (public_key, epoch)
        lock = self._fetch_locks.setdefault(key, trio.Lock())
        async with lock:
            while key not in self._store:
                self._fetches_in_flight[key] = False
                try:
                    duties = await fetch()
                finally:
                    is_stale = self._fetches_in_flight.pop(key)
                if is_stale:
                    # fetched against a branch that was abandoned while we waited
                    self.logger.debug(
                        "discarding duties of %s in epoch %d fetched before a reorg",
                        humanize_bytes(public_key),
                        epoch,
                    )
                    continue
                self._store[key] = duties
            return self._store[key]

    def invalidate_from_epoch(self, epoch: Epoch) -> int:
        """
        Drop every entry for ``epoch`` or later and mark fetches of those epochs
        that are still in flight as stale. Returns the number of dropped entries.
        """
        for key in self._fetches_in_flight:
            if key[1] >= epoch:
                self._fetches_in_flight[key] = True
        stale_keys = tuple(key for key in self._store if key[1] >= epoch)
        for key in stale_keys:
            del self._store[key]
        return len(stale_keys)

    def prune_before(self, epoch: Epoch) -> None:
        expired_keys = tuple(key for key in self._store if key[1] < epoch)
        for key in expired_keys:
            del self._store[key]
        idle_locks = tuple(
            key
            for key, lock in self._fetch_locks.items()
            if key[1] < epoch and not lock.locked()
        )
        for key in idle_locks:
            del self._fetch_locks[key]
