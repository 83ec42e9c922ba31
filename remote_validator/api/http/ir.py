"""
JSON representations of the payloads exchanged between a validator client and
a beacon node. Both sides of the validator API use these, so a payload marshalled
by one side parses on the other.

Unsigned 64-bit integers travel as decimal strings; bytes as ``0x``-prefixed hex.
"""
from dataclasses import asdict
from typing import (
    AbstractSet,
    Any,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Type,
    TypeVar,
    Union,
)

from eth_typing import BLSPubkey
from eth_utils import ValidationError, decode_hex, encode_hex
from ssz.exceptions import SSZException
from ssz.hashable_container import HashableContainer
from ssz.tools.dump import to_formatted_dict
from ssz.tools.parse import from_formatted_dict

from remote_validator.types.forks import Fork, ForkInfo
from remote_validator.types.subnet_subscription import SubnetSubscription
from remote_validator.typing import (
    CommitteeIndex,
    CommitteeValidatorIndex,
    Epoch,
    ReorgNotification,
    Root,
    Slot,
    ValidatorIndex,
    Version,
)
from remote_validator.validator_client.duty import (
    ValidatorDuties,
    ValidatorDutiesRequest,
)
from remote_validator.validator_client.reorg import ReorgEvent

# Everything a parser below raises when handed a payload of the wrong shape.
MALFORMED_PAYLOAD_ERRORS = (
    KeyError,
    TypeError,
    ValueError,
    ValidationError,
    SSZException,
)

JSON = Dict[str, Any]

TContainer = TypeVar("TContainer", bound=HashableContainer)


def marshal_container(value: HashableContainer) -> JSON:
    return to_formatted_dict(value)


def parse_container(data: JSON, sedes: Type[TContainer]) -> TContainer:
    if not isinstance(data, dict):
        raise TypeError(f"expected an object for {sedes.__name__}, got {data!r}")
    return from_formatted_dict(data, sedes)


def _parse_public_key(encoded_public_key: str) -> BLSPubkey:
    public_key = decode_hex(encoded_public_key)
    if len(public_key) != 48:
        raise ValueError(f"malformed public key {encoded_public_key}")
    return BLSPubkey(public_key)


def _parse_root(encoded_root: str) -> Root:
    root = decode_hex(encoded_root)
    if len(root) != 32:
        raise ValueError(f"malformed root {encoded_root}")
    return Root(root)


#
# Fork
#
def marshal_fork_info(fork_info: ForkInfo) -> JSON:
    return {
        "previous_version": encode_hex(fork_info.fork.previous_version),
        "current_version": encode_hex(fork_info.fork.current_version),
        "epoch": str(fork_info.fork.epoch),
        "genesis_validators_root": encode_hex(fork_info.genesis_validators_root),
    }


def parse_fork_info(data: JSON) -> ForkInfo:
    fork = Fork.create(
        previous_version=Version(decode_hex(data["previous_version"])),
        current_version=Version(decode_hex(data["current_version"])),
        epoch=Epoch(int(data["epoch"])),
    )
    return ForkInfo(fork, _parse_root(data["genesis_validators_root"]))


#
# Duties
#
def marshal_duties_request(request: ValidatorDutiesRequest) -> JSON:
    return {
        "epoch": str(request.epoch),
        "pubkeys": [encode_hex(public_key) for public_key in request.public_keys],
    }


def parse_duties_request(data: JSON) -> ValidatorDutiesRequest:
    return ValidatorDutiesRequest(
        epoch=Epoch(int(data["epoch"])),
        public_keys=tuple(map(_parse_public_key, data["pubkeys"])),
    )


def marshal_validator_duties(duties: ValidatorDuties) -> JSON:
    duty_data = asdict(duties)
    duty_data["validator_pubkey"] = encode_hex(duties.validator_pubkey)
    duty_data["block_proposal_slots"] = [
        str(slot) for slot in duties.block_proposal_slots
    ]
    for key in (
        "validator_index",
        "attestation_slot",
        "attestation_committee_index",
        "attestation_committee_position",
        "committee_length",
    ):
        duty_data[key] = str(duty_data[key])
    return duty_data


def parse_validator_duties(data: JSON) -> ValidatorDuties:
    return ValidatorDuties(
        validator_pubkey=_parse_public_key(data["validator_pubkey"]),
        validator_index=ValidatorIndex(int(data["validator_index"])),
        attestation_slot=Slot(int(data["attestation_slot"])),
        attestation_committee_index=CommitteeIndex(
            int(data["attestation_committee_index"])
        ),
        attestation_committee_position=CommitteeValidatorIndex(
            int(data["attestation_committee_position"])
        ),
        committee_length=int(data["committee_length"]),
        block_proposal_slots=tuple(
            Slot(int(slot)) for slot in data.get("block_proposal_slots", ())
        ),
    )


#
# Subscriptions
#
def marshal_subnet_subscriptions(
    subscriptions: AbstractSet[SubnetSubscription],
) -> List[JSON]:
    ordered = sorted(
        subscriptions,
        key=lambda subscription: (subscription.slot, subscription.committee_index),
    )
    return [
        {
            "committee_index": str(subscription.committee_index),
            "epoch": str(subscription.epoch),
            "slot": str(subscription.slot),
            "is_aggregator": subscription.is_aggregator,
        }
        for subscription in ordered
    ]


def parse_subnet_subscriptions(data: Iterable[JSON]) -> FrozenSet[SubnetSubscription]:
    return frozenset(
        SubnetSubscription(
            committee_index=CommitteeIndex(int(item["committee_index"])),
            epoch=Epoch(int(item["epoch"])),
            slot=Slot(int(item["slot"])),
            is_aggregator=bool(item["is_aggregator"]),
        )
        for item in data
    )


#
# Reorgs
#
def marshal_reorg(notification: Union[ReorgEvent, ReorgNotification]) -> JSON:
    return {
        "best_block_root": encode_hex(notification.best_block_root),
        "best_slot": str(notification.best_slot),
        "common_ancestor_slot": str(notification.common_ancestor_slot),
    }


def parse_reorg(data: JSON) -> ReorgNotification:
    return ReorgNotification(
        best_block_root=_parse_root(data["best_block_root"]),
        best_slot=Slot(int(data["best_slot"])),
        common_ancestor_slot=Slot(int(data["common_ancestor_slot"])),
    )


def parse_chain_reorg_event(data: JSON) -> ReorgNotification:
    """
    Translate the ``chain_reorg`` event of the standard beacon node event stream:
    the new head is the best block and the common ancestor sits ``depth`` slots
    below the reported slot.
    """
    slot = int(data["slot"])
    depth = int(data["depth"])
    if not 0 <= depth <= slot:
        raise ValueError(f"reorg depth {depth} is not possible at slot {slot}")
    return ReorgNotification(
        best_block_root=_parse_root(data["new_head_block"]),
        best_slot=Slot(slot),
        common_ancestor_slot=Slot(slot - depth),
    )
