import pytest
import trio

from remote_validator.types.forks import Fork, ForkInfo
from remote_validator.validator_client.duty import (
    AggregationDuty,
    AttestationDuty,
    BlockProposalDuty,
    Duty,
    DutyOutcome,
    DutyType,
)
from remote_validator.validator_client.tick import (
    AGGREGATION_TICK,
    ATTESTATION_TICK,
    BLOCK_PROPOSAL_TICK,
    Tick,
)


def _tick_at(clock, slot, count, slots_per_epoch):
    return Tick(clock.compute_time_at_slot(slot), slot, slot // slots_per_epoch, count)


@pytest.mark.trio
async def test_block_proposal_end_to_end(
    autojump_clock,
    coordinator,
    beacon_node,
    reorg_tracker,
    clock,
    signer,
    public_key,
    slots_per_epoch,
    proposal_slot_in_epoch,
):
    slot = slots_per_epoch + proposal_slot_in_epoch
    duties = await coordinator.duties_for(public_key, 1)
    assert duties.is_proposer_at(slot)

    results = await coordinator.perform_duties_at_tick(
        public_key, _tick_at(clock, slot, BLOCK_PROPOSAL_TICK, slots_per_epoch)
    )

    assert results == ((BlockProposalDuty(public_key, slot), DutyOutcome.Submitted),)
    (signed_block,) = beacon_node.published_blocks
    assert signed_block.slot == slot
    assert signed_block.message.body.randao_reveal == signer.sign(
        public_key, b"randao", (1).to_bytes(8, "little")
    )
    assert signed_block.signature == signer.sign(
        public_key, b"block", signed_block.message.hash_tree_root
    )
    assert reorg_tracker.list_reorg_events() == ()


@pytest.mark.trio
async def test_attestation_and_aggregation(
    autojump_clock,
    coordinator,
    beacon_node,
    clock,
    public_key,
    slots_per_epoch,
    attestation_slot_in_epoch,
    committee_index,
    committee_length,
):
    slot = attestation_slot_in_epoch

    attestation_results = await coordinator.perform_duties_at_tick(
        public_key, _tick_at(clock, slot, ATTESTATION_TICK, slots_per_epoch)
    )
    aggregation_results = await coordinator.perform_duties_at_tick(
        public_key, _tick_at(clock, slot, AGGREGATION_TICK, slots_per_epoch)
    )

    ((attestation_duty, attestation_outcome),) = attestation_results
    assert isinstance(attestation_duty, AttestationDuty)
    assert attestation_outcome == DutyOutcome.Submitted
    (attestation,) = beacon_node.published_attestations
    assert attestation.data.slot == slot
    assert attestation.data.index == committee_index
    assert tuple(attestation.aggregation_bits) == tuple(
        i == 0 for i in range(committee_length)
    )

    ((aggregation_duty, aggregation_outcome),) = aggregation_results
    assert isinstance(aggregation_duty, AggregationDuty)
    assert aggregation_outcome == DutyOutcome.Submitted
    (signed_aggregate,) = beacon_node.published_aggregates
    assert signed_aggregate.message.aggregate.data == attestation.data
    assert signed_aggregate.message.selection_proof == aggregation_duty.selection_proof
    assert (committee_index, slot) in beacon_node.committee_subscriptions


@pytest.mark.trio
async def test_fresh_duties_register_subnet_subscriptions(
    autojump_clock,
    coordinator,
    beacon_node,
    public_key,
    attestation_slot_in_epoch,
    committee_index,
):
    await coordinator.duties_for(public_key, 0)
    await coordinator.duties_for(public_key, 0)

    (subscriptions,) = beacon_node.subnet_subscriptions
    (subscription,) = subscriptions
    assert subscription.slot == attestation_slot_in_epoch
    assert subscription.committee_index == committee_index
    assert subscription.is_aggregator
    assert beacon_node.committee_subscriptions == [
        (committee_index, attestation_slot_in_epoch)
    ]


@pytest.mark.trio
async def test_nothing_happens_at_ticks_without_duties(
    autojump_clock, coordinator, beacon_node, clock, public_key, slots_per_epoch
):
    # slot 0 holds neither a proposal nor an attestation
    for count in (BLOCK_PROPOSAL_TICK, ATTESTATION_TICK):
        results = await coordinator.perform_duties_at_tick(
            public_key, _tick_at(clock, 0, count, slots_per_epoch)
        )
        assert results == ()

    assert beacon_node.published_blocks == []
    assert beacon_node.published_attestations == []


@pytest.mark.trio
async def test_duties_are_never_submitted_twice(
    autojump_clock,
    coordinator,
    beacon_node,
    clock,
    public_key,
    slots_per_epoch,
    proposal_slot_in_epoch,
):
    tick = _tick_at(clock, proposal_slot_in_epoch, BLOCK_PROPOSAL_TICK, slots_per_epoch)

    first = await coordinator.perform_duties_at_tick(public_key, tick)
    second = await coordinator.perform_duties_at_tick(public_key, tick)

    assert first[0][1] == DutyOutcome.Submitted
    assert second == ((first[0][0], DutyOutcome.Duplicate),)
    assert len(beacon_node.published_blocks) == 1


@pytest.mark.trio
async def test_unsynced_node_skips_the_slot(
    autojump_clock,
    coordinator,
    beacon_node,
    clock,
    public_key,
    slots_per_epoch,
    proposal_slot_in_epoch,
):
    beacon_node.highest_producible_slot = proposal_slot_in_epoch - 1

    results = await coordinator.perform_duties_at_tick(
        public_key,
        _tick_at(clock, proposal_slot_in_epoch, BLOCK_PROPOSAL_TICK, slots_per_epoch),
    )

    assert results == (
        (BlockProposalDuty(public_key, proposal_slot_in_epoch), DutyOutcome.Skipped),
    )
    assert beacon_node.published_blocks == []


@pytest.mark.trio
async def test_rejections_do_not_stop_the_duty_cycle(
    autojump_clock,
    coordinator,
    beacon_node,
    clock,
    public_key,
    slots_per_epoch,
    proposal_slot_in_epoch,
    attestation_slot_in_epoch,
):
    beacon_node.reject_submissions = True

    proposal_results = await coordinator.perform_duties_at_tick(
        public_key,
        _tick_at(clock, proposal_slot_in_epoch, BLOCK_PROPOSAL_TICK, slots_per_epoch),
    )
    attestation_results = await coordinator.perform_duties_at_tick(
        public_key,
        _tick_at(clock, attestation_slot_in_epoch, ATTESTATION_TICK, slots_per_epoch),
    )

    assert proposal_results[0][1] == DutyOutcome.Rejected
    assert attestation_results[0][1] == DutyOutcome.Rejected


@pytest.mark.trio
async def test_duty_fetches_are_retried_with_backoff(
    autojump_clock, coordinator, beacon_node, public_key, config
):
    beacon_node.fail_requests = config.duty_fetch_retries
    start = trio.current_time()

    duties = await coordinator.duties_for(public_key, 0)

    assert duties is not None
    assert len(beacon_node.duty_requests) == 1
    # 0.5 then 1.0 seconds of backoff
    assert trio.current_time() - start >= 1.5


@pytest.mark.trio
async def test_exhausted_duty_fetch_reports_a_missed_duty(
    autojump_clock,
    coordinator,
    beacon_node,
    clock,
    public_key,
    slots_per_epoch,
    proposal_slot_in_epoch,
):
    beacon_node.fail_requests = 100

    results = await coordinator.perform_duties_at_tick(
        public_key,
        _tick_at(clock, proposal_slot_in_epoch, BLOCK_PROPOSAL_TICK, slots_per_epoch),
    )

    assert results == (
        (
            Duty(public_key, proposal_slot_in_epoch, DutyType.BlockProposal),
            DutyOutcome.Missed,
        ),
    )
    assert beacon_node.published_blocks == []


@pytest.mark.trio
async def test_hung_node_misses_the_duty(
    autojump_clock,
    coordinator,
    beacon_node,
    clock,
    public_key,
    slots_per_epoch,
    proposal_slot_in_epoch,
):
    await coordinator.duties_for(public_key, 0)
    beacon_node.response_delay = 60

    results = await coordinator.perform_duties_at_tick(
        public_key,
        _tick_at(clock, proposal_slot_in_epoch, BLOCK_PROPOSAL_TICK, slots_per_epoch),
    )

    assert results == (
        (BlockProposalDuty(public_key, proposal_slot_in_epoch), DutyOutcome.Missed),
    )


@pytest.mark.trio
async def test_work_is_abandoned_at_the_end_of_the_slot(
    autojump_clock,
    coordinator,
    beacon_node,
    clock,
    public_key,
    slots_per_epoch,
    seconds_per_slot,
    proposal_slot_in_epoch,
):
    await coordinator.duties_for(public_key, 0)
    slot = proposal_slot_in_epoch
    await trio.sleep_until(clock.compute_time_at_slot(slot) + seconds_per_slot - 0.5)
    # the call itself is within its timeout but the slot ends first
    beacon_node.response_delay = 0.9

    results = await coordinator.perform_duties_at_tick(
        public_key, _tick_at(clock, slot, BLOCK_PROPOSAL_TICK, slots_per_epoch)
    )

    assert results == ((BlockProposalDuty(public_key, slot), DutyOutcome.Missed),)
    assert trio.current_time() == pytest.approx(clock.compute_time_at_slot(slot + 1))
    assert beacon_node.published_blocks == []


@pytest.mark.trio
async def test_reorg_drops_every_cached_epoch(
    autojump_clock,
    coordinator,
    beacon_node,
    duty_store,
    reorg_tracker,
    public_key,
    slots_per_epoch,
):
    for epoch in range(3):
        await coordinator.duties_for(public_key, epoch)
    requests_before = len(beacon_node.duty_requests)

    common_ancestor_slot = slots_per_epoch + 1
    reorg_tracker.record_reorg(b"\x01" * 32, slots_per_epoch * 2, common_ancestor_slot)

    assert len(duty_store) == 0

    # both an epoch starting before the common ancestor and the one containing it
    await coordinator.duties_for(public_key, 0)
    await coordinator.duties_for(public_key, 1)
    assert len(beacon_node.duty_requests) == requests_before + 2
    assert [request.epoch for request in beacon_node.duty_requests[-2:]] == [0, 1]


@pytest.mark.trio
async def test_reorg_during_a_fetch_forces_a_refetch(
    autojump_clock, coordinator, beacon_node, reorg_tracker, public_key
):
    beacon_node.response_delay = 0.5

    async with trio.open_nursery() as nursery:
        nursery.start_soon(coordinator.duties_for, public_key, 1)
        await trio.sleep(0.1)
        reorg_tracker.record_reorg(b"\x01" * 32, 6, 3)

    duty_requests_for_epoch = [
        request for request in beacon_node.duty_requests if request.epoch == 1
    ]
    assert len(duty_requests_for_epoch) == 2


@pytest.mark.trio
async def test_fork_info_is_cached_until_a_reorg(
    autojump_clock, coordinator, beacon_node, reorg_tracker
):
    original_fork_info = beacon_node.fork_info
    updated_fork_info = ForkInfo(
        Fork.create(current_version=b"\x00\x00\x00\x01", epoch=1),
        original_fork_info.genesis_validators_root,
    )

    assert await coordinator.fetch_fork(1) == original_fork_info
    beacon_node.fork_info = updated_fork_info
    assert await coordinator.fetch_fork(1) == original_fork_info

    reorg_tracker.record_reorg(b"\x01" * 32, 6, 3)

    assert await coordinator.fetch_fork(1) == updated_fork_info


@pytest.mark.trio
async def test_duties_for_genesis_are_loaded_ahead_of_time(
    autojump_clock, coordinator, duty_store, beacon_node, public_key
):
    results = await coordinator.perform_duties_at_tick(public_key, Tick(0, -1, -1, 0))

    assert results == ()
    assert duty_store.is_cached(public_key, 0)
    assert all(request.epoch >= 0 for request in beacon_node.duty_requests)


@pytest.mark.trio
async def test_upcoming_duties_are_prefetched(
    autojump_clock, coordinator, duty_store, clock, public_key, slots_per_epoch
):
    await coordinator.perform_duties_at_tick(
        public_key, _tick_at(clock, 0, AGGREGATION_TICK, slots_per_epoch)
    )

    assert duty_store.is_cached(public_key, 0)
    assert duty_store.is_cached(public_key, 1)


@pytest.mark.trio
async def test_prune_forgets_expired_epochs(
    autojump_clock,
    coordinator,
    duty_store,
    clock,
    public_key,
    slots_per_epoch,
    proposal_slot_in_epoch,
):
    tick = _tick_at(clock, proposal_slot_in_epoch, BLOCK_PROPOSAL_TICK, slots_per_epoch)
    await coordinator.perform_duties_at_tick(public_key, tick)
    await coordinator.duties_for(public_key, 1)

    coordinator.prune(1)

    assert not duty_store.is_cached(public_key, 0)
    assert duty_store.is_cached(public_key, 1)
    assert coordinator._submitted == set()
