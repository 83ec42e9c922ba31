from eth_utils import encode_hex
import pytest

from remote_validator.api.http.app import create_app
from remote_validator.api.http.ir import marshal_container, parse_container
from remote_validator.api.http.validator import (
    Context,
    Paths,
    _get_block_proposal,
    _get_node_version,
    _get_reorg_events,
    _post_attestations,
    _post_validator_duties,
)
from remote_validator.exceptions import InvalidRequest
from remote_validator.types.attestations import Attestation
from remote_validator.types.blocks import BeaconBlock
from remote_validator.validator_client.beacon_node import MockBeaconNode
from remote_validator.validator_client.reorg import ReorgEventTracker


@pytest.fixture
def context(slots_per_epoch):
    return Context(
        client_identifier="test-node",
        beacon_node=MockBeaconNode(slots_per_epoch),
        reorg_tracker=ReorgEventTracker(),
    )


@pytest.fixture
def app_client(context):
    return create_app(context).test_client()


@pytest.mark.trio
async def test_node_version_handler(context):
    assert await _get_node_version(context, {}) == {"version": "test-node"}


@pytest.mark.trio
async def test_duties_handler(context, public_keys):
    duties = await _post_validator_duties(
        context, {"epoch": "1", "pubkeys": [encode_hex(key) for key in public_keys]}
    )

    assert [item["validator_pubkey"] for item in duties] == [
        encode_hex(key) for key in public_keys
    ]
    assert all(isinstance(item["attestation_slot"], str) for item in duties)


@pytest.mark.trio
@pytest.mark.parametrize(
    "request_data",
    (
        {},
        {"epoch": "one", "pubkeys": []},
        {"epoch": "1", "pubkeys": ["0x00"]},
        ["not", "an", "object"],
        None,
    ),
)
async def test_malformed_duty_requests(context, request_data):
    with pytest.raises(InvalidRequest):
        await _post_validator_duties(context, request_data)


@pytest.mark.trio
async def test_block_handler_checks_the_randao_reveal(context):
    with pytest.raises(InvalidRequest):
        await _get_block_proposal(context, {"slot": "1", "randao_reveal": "0x01"})

    block = await _get_block_proposal(
        context, {"slot": "1", "randao_reveal": encode_hex(b"\x01" * 96)}
    )
    assert parse_container(block, BeaconBlock).slot == 1


@pytest.mark.trio
async def test_attestations_handler_wants_a_list(context):
    attestation = marshal_container(Attestation.create())

    with pytest.raises(InvalidRequest):
        await _post_attestations(context, attestation)

    assert await _post_attestations(context, [attestation, attestation]) is None
    assert len(context.beacon_node.published_attestations) == 2


@pytest.mark.trio
async def test_reorg_events_are_listed(context):
    context.reorg_tracker.record_reorg(b"\x01" * 32, 100, 90)
    context.reorg_tracker.record_reorg(b"\x02" * 32, 101, 95)

    events = await _get_reorg_events(context, {})

    assert [(event["best_slot"], event["common_ancestor_slot"]) for event in events] == [
        ("100", "90"),
        ("101", "95"),
    ]


@pytest.mark.trio
async def test_app_wraps_results(app_client):
    response = await app_client.get(Paths.node_version.value)

    assert response.status_code == 200
    assert await response.get_json() == {"data": {"version": "test-node"}}


@pytest.mark.trio
async def test_app_answers_404_when_nothing_can_be_produced(context, app_client):
    context.beacon_node.highest_producible_slot = 0

    response = await app_client.get(
        Paths.block_proposal.value,
        query_string={"slot": "1", "randao_reveal": encode_hex(b"\x01" * 96)},
    )

    assert response.status_code == 404


@pytest.mark.trio
async def test_app_answers_400_to_malformed_requests(app_client):
    response = await app_client.post(
        Paths.validator_duties.value, json={"epoch": "1"}
    )

    assert response.status_code == 400
    assert "message" in await response.get_json()


@pytest.mark.trio
async def test_app_answers_400_to_rejected_submissions(context, app_client):
    context.beacon_node.reject_submissions = True

    response = await app_client.post(
        Paths.attestations.value, json=[marshal_container(Attestation.create())]
    )

    assert response.status_code == 400


@pytest.mark.trio
async def test_app_answers_503_when_the_node_fails(context, app_client):
    context.beacon_node.fail_requests = 1

    response = await app_client.get(Paths.fork.value)

    assert response.status_code == 503


@pytest.mark.trio
async def test_app_refuses_undeclared_methods(app_client):
    response = await app_client.get(Paths.blocks.value)

    assert response.status_code == 405
