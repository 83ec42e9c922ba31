import json

import pytest
import trio

from remote_validator.api.http.events import iter_reorg_notifications
from remote_validator.validator_client.client import Client
from remote_validator.validator_client.clock import Clock
from remote_validator.validator_client.config import Config


@pytest.fixture
async def client_config(public_keys, slots_per_epoch, seconds_per_slot):
    # start two epochs before genesis so the client can prefetch its first duties
    seconds_per_epoch = slots_per_epoch * seconds_per_slot
    return Config(
        genesis_time=int(trio.current_time()) + 2 * seconds_per_epoch,
        public_keys=public_keys,
        slots_per_epoch=slots_per_epoch,
        seconds_per_slot=seconds_per_slot,
        request_timeout=1.0,
        duty_fetch_retries=2,
        retry_backoff=0.5,
        max_retry_backoff=1.0,
    )


@pytest.fixture
async def client(client_config, beacon_node, signer):
    clock = Clock.from_config(client_config, time_provider=trio.current_time)
    return Client(client_config, beacon_node, signer, clock=clock)


async def _run_until(client, t):
    with trio.move_on_after(t - trio.current_time()):
        await client.run()


@pytest.mark.trio
async def test_client_performs_duties_of_every_validator(
    autojump_clock, client, client_config, beacon_node, public_keys
):
    # slots 0 through 7 minus the final tick
    await _run_until(client, client_config.genesis_time + 47)

    block_slots = sorted(block.message.slot for block in beacon_node.published_blocks)
    attestation_slots = sorted(
        attestation.data.slot for attestation in beacon_node.published_attestations
    )
    aggregate_slots = sorted(
        signed.message.aggregate.data.slot for signed in beacon_node.published_aggregates
    )
    assert block_slots == [1] * len(public_keys) + [5] * len(public_keys)
    assert attestation_slots == [2] * len(public_keys) + [6] * len(public_keys)
    assert aggregate_slots == [2] * len(public_keys) + [6] * len(public_keys)
    assert {
        signed.message.aggregator_index for signed in beacon_node.published_aggregates
    } == {0}


@pytest.mark.trio
async def test_client_refetches_duties_after_a_reorg(
    autojump_clock, client, client_config, beacon_node, public_key, slots_per_epoch
):
    reorg_time = client_config.genesis_time + 25
    reorg_slot = slots_per_epoch

    async def _emit_reorg():
        await trio.sleep_until(reorg_time)
        beacon_node.emit_reorg(b"\x0f" * 32, reorg_slot, reorg_slot)

    async with trio.open_nursery() as nursery:
        nursery.start_soon(_emit_reorg)
        await _run_until(client, client_config.genesis_time + 30)

    assert [
        (event.best_slot, event.common_ancestor_slot)
        for event in client.reorg_tracker.list_reorg_events()
    ] == [(reorg_slot, reorg_slot)]
    epoch_one_requests = [
        request
        for request in beacon_node.duty_requests
        if request.epoch == 1 and public_key in request.public_keys
    ]
    assert len(epoch_one_requests) == 2


async def _garbled_reorg_notifications():
    data = json.dumps({"slot": "3", "depth": "1", "new_head_block": "0x" + "0e" * 32})
    stream = (
        f"event: chain_reorg\ndata: {data}\n\n".encode(),
        b"event: chain_reorg\ndata: \xff\xfe\n\n",
    )

    async def _chunks():
        for chunk in stream:
            yield chunk

    async for notification in iter_reorg_notifications(_chunks()):
        yield notification
    await trio.sleep_forever()


@pytest.mark.trio
async def test_garbled_reorg_stream_does_not_stop_duties(
    autojump_clock, monkeypatch, client, client_config, beacon_node, public_keys
):
    monkeypatch.setattr(beacon_node, "reorg_notifications", _garbled_reorg_notifications)

    await _run_until(client, client_config.genesis_time + 23)

    assert [
        (event.best_slot, event.common_ancestor_slot)
        for event in client.reorg_tracker.list_reorg_events()
    ] == [(3, 2)]
    block_slots = [block.message.slot for block in beacon_node.published_blocks]
    assert block_slots == [1] * len(public_keys)
