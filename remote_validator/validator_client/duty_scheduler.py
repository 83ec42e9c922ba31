import logging
from typing import (
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Set,
    Tuple,
    TypeVar,
)

from eth_typing import BLSPubkey, BLSSignature
import trio

from remote_validator._utils.humanize import humanize_bytes
from remote_validator.constants import GENESIS_EPOCH, GENESIS_SLOT
from remote_validator.exceptions import (
    BeaconNodeRejection,
    BeaconNodeRequestFailure,
    DutyFetchFailure,
)
from remote_validator.helpers import (
    compute_epoch_at_slot,
    compute_start_slot_at_epoch,
    is_aggregator,
)
from remote_validator.types.aggregate_and_proof import (
    AggregateAndProof,
    SignedAggregateAndProof,
)
from remote_validator.types.attestation_data import AttestationData
from remote_validator.types.attestations import Attestation
from remote_validator.types.blocks import SignedBeaconBlock
from remote_validator.types.forks import ForkInfo
from remote_validator.types.subnet_subscription import SubnetSubscription
from remote_validator.typing import Bitfield, Epoch, Root, Slot
from remote_validator.validator_client.abc import BeaconNodeAPI, SignerAPI
from remote_validator.validator_client.clock import Clock
from remote_validator.validator_client.config import Config
from remote_validator.validator_client.duty import (
    AggregationDuty,
    AttestationDuty,
    BlockProposalDuty,
    Duty,
    DutyOutcome,
    DutyType,
    ValidatorDuties,
    ValidatorDutiesRequest,
)
from remote_validator.validator_client.duty_store import DutyStore
from remote_validator.validator_client.reorg import ReorgEvent, ReorgEventTracker
from remote_validator.validator_client.tick import (
    AGGREGATION_TICK,
    ATTESTATION_TICK,
    BLOCK_PROPOSAL_TICK,
    Tick,
)

T = TypeVar("T")

SubmissionKey = Tuple[DutyType, BLSPubkey, Slot]
ValidatorSlot = Tuple[BLSPubkey, Slot]
DutyResult = Tuple[Duty, DutyOutcome]

_DUTY_TYPE_AT_TICK = {
    BLOCK_PROPOSAL_TICK: DutyType.BlockProposal,
    ATTESTATION_TICK: DutyType.Attestation,
    AGGREGATION_TICK: DutyType.Aggregation,
}


class DutyCoordinator:
    """
    Drives the duty cycle of the managed validators against a beacon node.

    Duties are read through the ``DutyStore``. Fork info is cached per epoch. Both
    caches are invalidated as soon as a reorg is recorded, so a fetch that
    completes afterwards observes the new head. Every artifact sent to the node
    is keyed by ``(duty_type, validator, slot)``; a key is never sent twice.
    """

    logger = logging.getLogger(
        "remote_validator.validator_client.duty_scheduler.DutyCoordinator"
    )

    def __init__(
        self,
        beacon_node: BeaconNodeAPI,
        signer: SignerAPI,
        duty_store: DutyStore,
        clock: Clock,
        config: Config,
        reorg_tracker: Optional[ReorgEventTracker] = None,
    ) -> None:
        self._beacon_node = beacon_node
        self._signer = signer
        self._duty_store = duty_store
        self._clock = clock
        self._config = config

        self._fork_infos: Dict[Epoch, ForkInfo] = {}
        self._fork_lock = trio.Lock()
        # bumped on every reorg so a fork fetch in flight can tell it went stale
        self._fork_generation = 0

        self._selection_proofs: Dict[ValidatorSlot, BLSSignature] = {}
        self._attestation_data: Dict[ValidatorSlot, AttestationData] = {}
        self._submitted: Set[SubmissionKey] = set()

        if reorg_tracker is not None:
            reorg_tracker.subscribe(self.on_reorg)

    @property
    def _slots_per_epoch(self) -> int:
        return self._config.slots_per_epoch

    def _epoch_of(self, slot: Slot) -> Epoch:
        return compute_epoch_at_slot(slot, self._slots_per_epoch)

    #
    # Requests to the beacon node
    #
    async def _call(self, request: Callable[[], Awaitable[T]], description: str) -> T:
        timeout = self._config.request_timeout
        try:
            with trio.fail_after(timeout):
                return await request()
        except trio.TooSlowError as err:
            raise BeaconNodeRequestFailure(
                f"{description} timed out after {timeout} seconds"
            ) from err

    async def _with_retries(
        self, request: Callable[[], Awaitable[T]], description: str
    ) -> T:
        attempts = self._config.duty_fetch_retries + 1
        backoff = self._config.retry_backoff
        attempt = 1
        while True:
            try:
                return await self._call(request, description)
            except BeaconNodeRejection as err:
                raise DutyFetchFailure(f"beacon node refused {description}: {err}") from err
            except BeaconNodeRequestFailure as err:
                if attempt >= attempts:
                    raise DutyFetchFailure(
                        f"giving up on {description} after {attempts} attempt(s): {err}"
                    ) from err
                self.logger.warning(
                    "attempt %d/%d at %s failed, retrying in %.2f seconds: %s",
                    attempt,
                    attempts,
                    description,
                    backoff,
                    err,
                )
            await trio.sleep(backoff)
            backoff = min(backoff * 2, self._config.max_retry_backoff)
            attempt += 1

    #
    # Fork info and duties
    #
    async def fetch_fork(self, epoch: Epoch) -> ForkInfo:
        async with self._fork_lock:
            while epoch not in self._fork_infos:
                generation = self._fork_generation
                fork_info = await self._with_retries(
                    self._beacon_node.get_fork, "fork info"
                )
                if fork_info is None:
                    raise DutyFetchFailure("beacon node has no fork info before genesis")
                if generation != self._fork_generation:
                    continue
                self._fork_infos[epoch] = fork_info
            return self._fork_infos[epoch]

    async def _request_duties(
        self, public_key: BLSPubkey, epoch: Epoch
    ) -> Optional[ValidatorDuties]:
        request = ValidatorDutiesRequest(epoch, (public_key,))
        all_duties = await self._beacon_node.get_duties(request)
        for duties in all_duties:
            if duties.validator_pubkey != public_key:
                continue
            if self._epoch_of(duties.attestation_slot) != epoch or any(
                self._epoch_of(slot) != epoch for slot in duties.block_proposal_slots
            ):
                raise BeaconNodeRequestFailure(
                    f"beacon node returned duties outside of epoch {epoch}: {duties}"
                )
            return duties
        return None

    async def duties_for(
        self, public_key: BLSPubkey, epoch: Epoch
    ) -> Optional[ValidatorDuties]:
        """
        Return the duties of ``public_key`` in ``epoch``, loading them from the
        beacon node if they are not cached. Raise ``DutyFetchFailure`` if they
        cannot be loaded.
        """
        fetched: List[Optional[ValidatorDuties]] = []

        async def _fetch() -> Optional[ValidatorDuties]:
            duties = await self._with_retries(
                lambda: self._request_duties(public_key, epoch),
                f"duties of {humanize_bytes(public_key)} in epoch {epoch}",
            )
            fetched.append(duties)
            return duties

        duties = await self._duty_store.get_or_fetch(public_key, epoch, _fetch)
        if fetched and fetched[-1] is duties and duties is not None:
            self.logger.debug("fetched %s", duties)
            await self._register_subscriptions(public_key, epoch, duties)
        return duties

    async def _register_subscriptions(
        self, public_key: BLSPubkey, epoch: Epoch, duties: ValidatorDuties
    ) -> None:
        slot = duties.attestation_slot
        committee_index = duties.attestation_committee_index
        try:
            fork_info = await self.fetch_fork(epoch)
            selection_proof = await self._signer.sign_aggregation_slot(
                public_key, slot, fork_info
            )
            self._selection_proofs[(public_key, slot)] = selection_proof
            aggregator = is_aggregator(duties.committee_length, selection_proof)
            subscription = SubnetSubscription(committee_index, epoch, slot, aggregator)
            await self._call(
                lambda: self._beacon_node.subscribe_to_persistent_subnets(
                    frozenset((subscription,))
                ),
                "subnet subscription",
            )
            if aggregator:
                await self._call(
                    lambda: self._beacon_node.subscribe_to_beacon_committee_for_aggregation(
                        committee_index, slot
                    ),
                    "committee subscription",
                )
        except (DutyFetchFailure, BeaconNodeRequestFailure, BeaconNodeRejection) as err:
            self.logger.warning(
                "could not subscribe %s to committee %d at slot %d: %s",
                humanize_bytes(public_key),
                committee_index,
                slot,
                err,
            )

    def on_reorg(self, event: ReorgEvent) -> None:
        # every cached epoch was computed against the old head
        dropped = self._duty_store.invalidate_from_epoch(GENESIS_EPOCH)
        self._fork_infos.clear()
        self._fork_generation += 1
        self.logger.warning("%s: dropped %d cached duties", event, dropped)

    async def _prefetch(self, public_key: BLSPubkey, epoch: Epoch) -> None:
        try:
            await self.duties_for(public_key, epoch)
        except DutyFetchFailure as err:
            self.logger.warning(
                "could not load upcoming duties of %s in epoch %d: %s",
                humanize_bytes(public_key),
                epoch,
                err,
            )

    #
    # Duties
    #
    async def perform_duties_at_tick(
        self, public_key: BLSPubkey, tick: Tick
    ) -> Tuple[DutyResult, ...]:
        """
        Perform whatever ``public_key`` has to do at ``tick``, giving up on
        anything unfinished when the slot is over. Returns every duty that was
        due along with its outcome.
        """
        if tick.slot < GENESIS_SLOT:
            await self._prefetch(public_key, GENESIS_EPOCH)
            return ()

        results: List[DutyResult] = []
        with trio.move_on_after(self._clock.seconds_until_slot_end(tick.slot)) as deadline:
            await self._perform_duties(public_key, tick, results)
        if deadline.cancelled_caught:
            self.logger.warning(
                "%s: slot ended before the work of %s was done",
                tick,
                humanize_bytes(public_key),
            )
        return tuple(results)

    async def _perform_duties(
        self, public_key: BLSPubkey, tick: Tick, results: List[DutyResult]
    ) -> None:
        slot = tick.slot
        try:
            duties = await self.duties_for(public_key, tick.epoch)
        except DutyFetchFailure as err:
            duty = Duty(public_key, slot, _DUTY_TYPE_AT_TICK[tick.count])
            self.logger.error("%s: missed %s, duties are unknown: %s", tick, duty, err)
            results.append((duty, DutyOutcome.Missed))
            return

        self.logger.debug("%s: %s has duties %s", tick, humanize_bytes(public_key), duties)
        if duties is not None:
            if tick.count == BLOCK_PROPOSAL_TICK and duties.is_proposer_at(slot):
                await self._resolve(
                    BlockProposalDuty(public_key, slot), self._propose_block, results
                )
            elif tick.count == ATTESTATION_TICK and duties.is_attester_at(slot):
                attestation_duty = AttestationDuty(
                    public_key,
                    slot,
                    committee_index=duties.attestation_committee_index,
                    committee_position=duties.attestation_committee_position,
                    committee_length=duties.committee_length,
                )
                await self._resolve(attestation_duty, self._attest, results)
            elif tick.count == AGGREGATION_TICK and duties.is_attester_at(slot):
                selection_proof = self._selection_proofs.get((public_key, slot))
                if selection_proof is not None and is_aggregator(
                    duties.committee_length, selection_proof
                ):
                    aggregation_duty = AggregationDuty(
                        public_key,
                        slot,
                        validator_index=duties.validator_index,
                        committee_index=duties.attestation_committee_index,
                        selection_proof=selection_proof,
                    )
                    await self._resolve(aggregation_duty, self._aggregate, results)

        if tick.count == AGGREGATION_TICK:
            await self._prefetch(public_key, Epoch(tick.epoch + 1))

    async def _resolve(
        self,
        duty: Duty,
        perform: Callable[[T], Awaitable[DutyOutcome]],
        results: List[DutyResult],
    ) -> None:
        # stays ``Missed`` if the slot ends first
        results.append((duty, DutyOutcome.Missed))
        index = len(results) - 1

        if duty.submission_key in self._submitted:
            self.logger.warning("refusing to perform %s a second time", duty)
            results[index] = (duty, DutyOutcome.Duplicate)
            return

        try:
            outcome = await perform(duty)
        except (DutyFetchFailure, BeaconNodeRequestFailure) as err:
            self.logger.warning("missed %s: %s", duty, err)
            outcome = DutyOutcome.Missed
        except BeaconNodeRejection as err:
            self.logger.warning("beacon node rejected %s: %s", duty, err)
            outcome = DutyOutcome.Rejected
        results[index] = (duty, outcome)

    async def _submit(
        self, duty: Duty, send: Callable[[], Awaitable[None]]
    ) -> DutyOutcome:
        if duty.submission_key in self._submitted:
            self.logger.warning("refusing to submit %s a second time", duty)
            return DutyOutcome.Duplicate
        # recorded before sending: an attempt that fails midway may have reached the node
        self._submitted.add(duty.submission_key)
        await self._call(send, f"submission of {duty}")
        self.logger.info("submitted %s", duty)
        return DutyOutcome.Submitted

    async def _propose_block(self, duty: BlockProposalDuty) -> DutyOutcome:
        public_key = duty.validator_public_key
        epoch = self._epoch_of(duty.slot)
        fork_info = await self.fetch_fork(epoch)
        randao_reveal = await self._signer.sign_randao_reveal(public_key, epoch, fork_info)
        block = await self._call(
            lambda: self._beacon_node.create_unsigned_block(
                duty.slot, randao_reveal, self._config.padded_graffiti
            ),
            f"block for slot {duty.slot}",
        )
        if block is None:
            self.logger.info("no block to propose at slot %d; skipping", duty.slot)
            return DutyOutcome.Skipped

        signature = await self._signer.sign_block(public_key, block, fork_info)
        signed_block = SignedBeaconBlock.create(message=block, signature=signature)
        return await self._submit(
            duty, lambda: self._beacon_node.send_signed_block(signed_block)
        )

    async def _attest(self, duty: AttestationDuty) -> DutyOutcome:
        public_key = duty.validator_public_key
        fork_info = await self.fetch_fork(self._epoch_of(duty.slot))
        attestation = await self._call(
            lambda: self._beacon_node.create_unsigned_attestation(
                duty.slot, duty.committee_index
            ),
            f"attestation for slot {duty.slot}",
        )
        if attestation is None:
            self.logger.info(
                "no attestation for committee %d at slot %d; skipping",
                duty.committee_index,
                duty.slot,
            )
            return DutyOutcome.Skipped

        signature = await self._signer.sign_attestation_data(
            public_key, attestation.data, fork_info
        )
        aggregation_bits = Bitfield(
            tuple(i == duty.committee_position for i in range(duty.committee_length))
        )
        signed_attestation = Attestation.create(
            aggregation_bits=aggregation_bits, data=attestation.data, signature=signature
        )
        self._attestation_data[(public_key, duty.slot)] = attestation.data
        return await self._submit(
            duty, lambda: self._beacon_node.send_signed_attestation(signed_attestation)
        )

    async def _attestation_data_root(self, duty: AggregationDuty) -> Optional[Root]:
        attestation_data = self._attestation_data.get(
            (duty.validator_public_key, duty.slot)
        )
        if attestation_data is not None:
            return attestation_data.hash_tree_root
        attestation = await self._call(
            lambda: self._beacon_node.create_unsigned_attestation(
                duty.slot, duty.committee_index
            ),
            f"attestation for slot {duty.slot}",
        )
        if attestation is None:
            return None
        return attestation.data.hash_tree_root

    async def _aggregate(self, duty: AggregationDuty) -> DutyOutcome:
        public_key = duty.validator_public_key
        fork_info = await self.fetch_fork(self._epoch_of(duty.slot))
        attestation_data_root = await self._attestation_data_root(duty)
        if attestation_data_root is None:
            return DutyOutcome.Skipped
        aggregate = await self._call(
            lambda: self._beacon_node.create_aggregate(attestation_data_root),
            f"aggregate for slot {duty.slot}",
        )
        if aggregate is None:
            self.logger.info("nothing to aggregate at slot %d; skipping", duty.slot)
            return DutyOutcome.Skipped

        aggregate_and_proof = AggregateAndProof.create(
            aggregator_index=duty.validator_index,
            aggregate=aggregate,
            selection_proof=duty.selection_proof,
        )
        signature = await self._signer.sign_aggregate_and_proof(
            public_key, aggregate_and_proof, fork_info
        )
        signed_aggregate_and_proof = SignedAggregateAndProof.create(
            message=aggregate_and_proof, signature=signature
        )
        return await self._submit(
            duty,
            lambda: self._beacon_node.send_aggregate_and_proof(signed_aggregate_and_proof),
        )

    def prune(self, epoch: Epoch) -> None:
        """
        Forget everything about epochs before ``epoch``.
        """
        start_slot = compute_start_slot_at_epoch(epoch, self._slots_per_epoch)
        self._duty_store.prune_before(epoch)
        for stale_epoch in tuple(e for e in self._fork_infos if e < epoch):
            del self._fork_infos[stale_epoch]
        for cache in (self._selection_proofs, self._attestation_data):
            for key in tuple(key for key in cache if key[1] < start_slot):
                del cache[key]
        self._submitted = {key for key in self._submitted if key[2] >= start_slot}
