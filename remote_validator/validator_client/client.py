import logging
from typing import Sequence

from eth_typing import BLSPubkey
from eth_utils import ValidationError
import trio
from trio.abc import ReceiveChannel, SendChannel

from remote_validator._utils.humanize import humanize_bytes, humanize_public_keys
from remote_validator.exceptions import BeaconNodeRequestFailure
from remote_validator.validator_client.abc import BeaconNodeAPI, SignerAPI
from remote_validator.validator_client.beacon_node import BeaconNode
from remote_validator.validator_client.clock import Clock
from remote_validator.validator_client.config import Config
from remote_validator.validator_client.duty import DutyOutcome
from remote_validator.validator_client.duty_scheduler import DutyCoordinator
from remote_validator.validator_client.duty_store import DutyStore
from remote_validator.validator_client.reorg import ReorgEventTracker
from remote_validator.validator_client.tick import TICKS_PER_SLOT, Tick

# NOTE: every tick is handled in its own task, so a validator only falls behind
# when its task cannot even be scheduled for a whole slot.
MAX_BUFFERED_TICKS = TICKS_PER_SLOT
REORG_STREAM_RECONNECT_INTERVAL = 2  # seconds


class Client:
    logger = logging.getLogger("remote_validator.validator_client.client")

    def __init__(
        self,
        config: Config,
        beacon_node: BeaconNodeAPI,
        signer: SignerAPI,
        clock: Clock = None,
    ) -> None:
        self._config = config
        self._beacon_node = beacon_node
        self._clock = clock if clock is not None else Clock.from_config(config)

        self.reorg_tracker = ReorgEventTracker()
        self.duty_store = DutyStore()
        self.coordinator = DutyCoordinator(
            beacon_node,
            signer,
            self.duty_store,
            self._clock,
            config,
            reorg_tracker=self.reorg_tracker,
        )

    @classmethod
    def from_config(cls, config: Config, signer: SignerAPI) -> "Client":
        return cls(config, BeaconNode.from_config(config), signer)

    async def run(self) -> None:
        public_keys = self._config.public_keys
        self.logger.info(
            "managing %d validator(s) with public key(s) %s",
            len(public_keys),
            humanize_public_keys(public_keys),
        )
        async with self._beacon_node:
            async with trio.open_nursery() as nursery:
                tick_senders = []
                for public_key in public_keys:
                    tick_sender, tick_receiver = trio.open_memory_channel[Tick](
                        MAX_BUFFERED_TICKS
                    )
                    tick_senders.append(tick_sender)
                    nursery.start_soon(self._run_validator, public_key, tick_receiver)
                nursery.start_soon(self._record_reorgs)
                nursery.start_soon(self._dispatch_ticks, tick_senders)

    async def _dispatch_ticks(self, tick_senders: Sequence[SendChannel[Tick]]) -> None:
        try:
            async for tick in self._clock:
                if tick.is_first_in_epoch(self._config.slots_per_epoch) and tick.epoch > 0:
                    self.coordinator.prune(tick.epoch)
                for tick_sender in tick_senders:
                    try:
                        tick_sender.send_nowait(tick)
                    except trio.WouldBlock:
                        self.logger.warning("%s: a validator is falling behind, dropping tick", tick)
        finally:
            for tick_sender in tick_senders:
                tick_sender.close()

    async def _run_validator(
        self, public_key: BLSPubkey, ticks: ReceiveChannel[Tick]
    ) -> None:
        async with ticks:
            async with trio.open_nursery() as nursery:
                async for tick in ticks:
                    nursery.start_soon(self._perform_duties_at_tick, public_key, tick)

    async def _perform_duties_at_tick(self, public_key: BLSPubkey, tick: Tick) -> None:
        results = await self.coordinator.perform_duties_at_tick(public_key, tick)
        for duty, outcome in results:
            if outcome is DutyOutcome.Submitted:
                continue
            self.logger.warning(
                "%s: %s of %s ended as %s",
                tick,
                duty.duty_type.name,
                humanize_bytes(public_key),
                outcome.name,
            )

    async def _record_reorgs(self) -> None:
        while True:
            try:
                async for notification in self._beacon_node.reorg_notifications():
                    try:
                        self.reorg_tracker.record_reorg(*notification)
                    except ValidationError as err:
                        self.logger.warning("ignoring reorg notification %s: %s", notification, err)
            except BeaconNodeRequestFailure as err:
                self.logger.warning("lost the reorg stream of the beacon node: %s", err)
            await trio.sleep(REORG_STREAM_RECONNECT_INTERVAL)
