"""
This module contains the HTTP validator API connecting a validator client to a beacon node.

Handlers receive the query arguments (``GET``) or the decoded JSON body (``POST``)
and return the JSON-ready ``data`` of the response. A handler returning ``None``
found nothing to serve.
"""
from dataclasses import dataclass
from enum import Enum, unique
import logging
from typing import Any, Callable, Dict, List, TypeVar, Union

from eth_typing import BLSSignature
from eth_utils import decode_hex

from remote_validator.api.http.ir import (
    MALFORMED_PAYLOAD_ERRORS,
    marshal_container,
    marshal_fork_info,
    marshal_reorg,
    marshal_validator_duties,
    parse_container,
    parse_duties_request,
    parse_subnet_subscriptions,
)
from remote_validator.exceptions import InvalidRequest
from remote_validator.types.aggregate_and_proof import SignedAggregateAndProof
from remote_validator.types.attestations import Attestation
from remote_validator.types.blocks import SignedBeaconBlock
from remote_validator.typing import CommitteeIndex, Graffiti, Root, Slot
from remote_validator.validator_client.abc import BeaconNodeAPI
from remote_validator.validator_client.reorg import ReorgEventTracker

logger = logging.getLogger("remote_validator.api.http.validator")

Request = Union[Dict[str, Any], List[Any]]
Response = Any

T = TypeVar("T")


@unique
class Paths(Enum):
    node_version = "/eth/v1/node/version"
    fork = "/eth/v1/beacon/states/head/fork"
    validator_duties = "/eth/v1/validator/duties"
    block_proposal = "/eth/v1/validator/block"
    blocks = "/eth/v1/beacon/blocks"
    attestation = "/eth/v1/validator/attestation"
    attestations = "/eth/v1/beacon/pool/attestations"
    aggregate_attestation = "/eth/v1/validator/aggregate_attestation"
    aggregate_and_proofs = "/eth/v1/validator/aggregate_and_proofs"
    beacon_committee_subscriptions = "/eth/v1/validator/beacon_committee_subscriptions"
    persistent_subnets_subscription = "/eth/v1/validator/persistent_subnets_subscription"
    reorg_events = "/eth/v1/debug/reorg_events"
    # served by the node as a server-sent event stream
    events = "/eth/v1/events"


@dataclass
class Context:
    client_identifier: str
    beacon_node: BeaconNodeAPI
    reorg_tracker: ReorgEventTracker


def _parse_request(request: Request, parser: Callable[[Any], T], description: str) -> T:
    try:
        return parser(request)
    except MALFORMED_PAYLOAD_ERRORS as err:
        raise InvalidRequest(f"malformed {description}: {err}") from err


def _parse_list(request: Request, sedes: Any) -> List[Any]:
    if not isinstance(request, list):
        raise TypeError(f"expected a list of {sedes.__name__}, got {request!r}")
    return [parse_container(item, sedes) for item in request]


async def _get_node_version(context: Context, _request: Request) -> Response:
    return {"version": context.client_identifier}


async def _get_fork(context: Context, _request: Request) -> Response:
    fork_info = await context.beacon_node.get_fork()
    if fork_info is None:
        return None
    return marshal_fork_info(fork_info)


async def _post_validator_duties(context: Context, request: Request) -> Response:
    duties_request = _parse_request(request, parse_duties_request, "duties request")
    duties = await context.beacon_node.get_duties(duties_request)
    return [marshal_validator_duties(duty) for duty in duties]


async def _get_block_proposal(context: Context, request: Request) -> Response:
    def _parse(args: Dict[str, str]) -> Any:
        randao_reveal = decode_hex(args["randao_reveal"])
        if len(randao_reveal) != 96:
            raise ValueError(f"malformed randao reveal {args['randao_reveal']}")
        graffiti = decode_hex(args["graffiti"]) if "graffiti" in args else None
        return Slot(int(args["slot"])), BLSSignature(randao_reveal), graffiti

    slot, randao_reveal, graffiti = _parse_request(request, _parse, "block request")
    block = await context.beacon_node.create_unsigned_block(
        slot, randao_reveal, None if graffiti is None else Graffiti(graffiti)
    )
    if block is None:
        return None
    return marshal_container(block)


async def _post_block(context: Context, request: Request) -> Response:
    block = _parse_request(
        request, lambda data: parse_container(data, SignedBeaconBlock), "signed block"
    )
    logger.debug("relaying block at slot %d", block.slot)
    await context.beacon_node.send_signed_block(block)
    return None


async def _get_attestation(context: Context, request: Request) -> Response:
    slot, committee_index = _parse_request(
        request,
        lambda args: (Slot(int(args["slot"])), CommitteeIndex(int(args["committee_index"]))),
        "attestation request",
    )
    attestation = await context.beacon_node.create_unsigned_attestation(
        slot, committee_index
    )
    if attestation is None:
        return None
    return marshal_container(attestation)


async def _post_attestations(context: Context, request: Request) -> Response:
    attestations = _parse_request(
        request, lambda data: _parse_list(data, Attestation), "attestations"
    )
    for attestation in attestations:
        await context.beacon_node.send_signed_attestation(attestation)
    return None


async def _get_aggregate_attestation(context: Context, request: Request) -> Response:
    def _parse(args: Dict[str, str]) -> Root:
        root = decode_hex(args["attestation_data_root"])
        if len(root) != 32:
            raise ValueError(f"malformed root {args['attestation_data_root']}")
        return Root(root)

    attestation_data_root = _parse_request(request, _parse, "aggregate request")
    aggregate = await context.beacon_node.create_aggregate(attestation_data_root)
    if aggregate is None:
        return None
    return marshal_container(aggregate)


async def _post_aggregate_and_proofs(context: Context, request: Request) -> Response:
    aggregates = _parse_request(
        request,
        lambda data: _parse_list(data, SignedAggregateAndProof),
        "aggregates and proofs",
    )
    for aggregate in aggregates:
        await context.beacon_node.send_aggregate_and_proof(aggregate)
    return None


async def _post_beacon_committee_subscription(
    context: Context, request: Request
) -> Response:
    committee_index, aggregation_slot = _parse_request(
        request,
        lambda data: (
            CommitteeIndex(int(data["committee_index"])),
            Slot(int(data["aggregation_slot"])),
        ),
        "committee subscription",
    )
    await context.beacon_node.subscribe_to_beacon_committee_for_aggregation(
        committee_index, aggregation_slot
    )
    return None


async def _post_persistent_subnets_subscription(
    context: Context, request: Request
) -> Response:
    subscriptions = _parse_request(
        request, parse_subnet_subscriptions, "subnet subscriptions"
    )
    await context.beacon_node.subscribe_to_persistent_subnets(subscriptions)
    return None


async def _get_reorg_events(context: Context, _request: Request) -> Response:
    return [marshal_reorg(event) for event in context.reorg_tracker.list_reorg_events()]


GET = "GET"
POST = "POST"


ServerHandlers = {
    Paths.node_version.value: {GET: _get_node_version},
    Paths.fork.value: {GET: _get_fork},
    Paths.validator_duties.value: {POST: _post_validator_duties},
    Paths.block_proposal.value: {GET: _get_block_proposal},
    Paths.blocks.value: {POST: _post_block},
    Paths.attestation.value: {GET: _get_attestation},
    Paths.attestations.value: {POST: _post_attestations},
    Paths.aggregate_attestation.value: {GET: _get_aggregate_attestation},
    Paths.aggregate_and_proofs.value: {POST: _post_aggregate_and_proofs},
    Paths.beacon_committee_subscriptions.value: {
        POST: _post_beacon_committee_subscription
    },
    Paths.persistent_subnets_subscription.value: {
        POST: _post_persistent_subnets_subscription
    },
    Paths.reorg_events.value: {GET: _get_reorg_events},
}
