import logging
import math
import time
from typing import AsyncIterable, AsyncIterator, Callable

import trio

from remote_validator.typing import Epoch, Slot
from remote_validator.validator_client.config import Config
from remote_validator.validator_client.tick import TICKS_PER_SLOT, Tick

DEFAULT_EPOCH_LOOKAHEAD = 1
# Absorbs floating point error when a time lands exactly on a tick boundary.
TICK_EPSILON = 1e-6


def _get_unix_time() -> float:
    return time.time()


TimeProvider = Callable[[], float]


class Clock(AsyncIterable[Tick]):
    logger = logging.getLogger("remote_validator.validator_client.clock")

    def __init__(
        self,
        seconds_per_slot: int,
        genesis_time: int,
        slots_per_epoch: int,
        seconds_per_epoch: int,
        time_provider: TimeProvider = _get_unix_time,
        ticks_per_slot: int = TICKS_PER_SLOT,
    ) -> None:
        self._time_provider = time_provider

        self._ticks_per_slot = ticks_per_slot
        # The validator client needs to take action with sub-slot granularity.
        # Each period on this finer resolution is called a "tick".
        self._tick_interval = seconds_per_slot / self._ticks_per_slot
        self._seconds_per_slot = seconds_per_slot
        self._genesis_time = genesis_time
        self._slots_per_epoch = slots_per_epoch
        self._seconds_per_epoch = seconds_per_epoch

    @classmethod
    def from_config(
        cls, config: Config, time_provider: TimeProvider = _get_unix_time
    ) -> "Clock":
        return cls(
            config.seconds_per_slot,
            config.genesis_time,
            config.slots_per_epoch,
            config.seconds_per_epoch,
            time_provider=time_provider,
        )

    @property
    def slots_per_epoch(self) -> int:
        return self._slots_per_epoch

    def now(self) -> float:
        return self._time_provider()

    def _compute_tick_index(self, t: float) -> int:
        """
        Number of whole ticks elapsed since genesis at time ``t``; negative before genesis.
        """
        time_since_genesis = t - self._genesis_time
        return math.floor(time_since_genesis / self._tick_interval + TICK_EPSILON)

    def _compute_epoch(self, slot: Slot) -> Epoch:
        return Epoch(slot // self._slots_per_epoch)

    def compute_current_tick(self) -> Tick:
        t = self._time_provider()
        slot, count = divmod(self._compute_tick_index(t), self._ticks_per_slot)
        return Tick(t, Slot(slot), self._compute_epoch(Slot(slot)), count)

    def compute_time_at_slot(self, slot: Slot) -> float:
        return self._genesis_time + self._seconds_per_slot * slot

    def seconds_until_slot_end(self, slot: Slot) -> float:
        """
        Time left before ``slot`` is over; any work for ``slot`` past this point
        has no value to the protocol.
        """
        return self.compute_time_at_slot(Slot(slot + 1)) - self._time_provider()

    async def _wait_until(self, target_t: float) -> None:
        """
        Block execution until ``target_t`` (a unix timestamp)
        """
        t = self._time_provider()
        duration = max(target_t - t, 0)
        await trio.sleep(duration)

    async def _wait_for_genesis_with_lookahead(
        self, with_epoch_lookahead: int = DEFAULT_EPOCH_LOOKAHEAD
    ) -> None:
        """
        Sleep the clock until the time is ``with_epoch_lookahead`` epoch(s)
        of slots ahead of the genesis time.

        This is the earliest time the client can poll for duties and expect to receive anything
        meaningful from a honest beacon node.
        """
        genesis_time = self._genesis_time
        start_time = genesis_time - (with_epoch_lookahead * self._seconds_per_epoch)
        if self._time_provider() < start_time:
            self.logger.info(
                "...blocking until unix time %s which is %d epochs before the genesis time %d",
                start_time,
                with_epoch_lookahead,
                genesis_time,
            )
        await self._wait_until(start_time)

    def _compute_time_of_next_tick(self, t: float) -> float:
        """
        Ticks are aligned to the genesis time, so the next tick can be computed
        from the tick index even if there was jitter in producing the current one.
        """
        next_tick_index = self._compute_tick_index(t) + 1
        return self._genesis_time + next_tick_index * self._tick_interval

    async def __aiter__(self) -> AsyncIterator[Tick]:
        await self._wait_for_genesis_with_lookahead()

        while True:
            tick = self.compute_current_tick()
            self.logger.debug("%s", tick)
            if tick.is_at_genesis(self._genesis_time):
                self.logger.warning("Network genesis time is now!")
            yield tick
            await self._wait_until(self._compute_time_of_next_tick(tick.t))
