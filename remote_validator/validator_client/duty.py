from dataclasses import dataclass, field
from enum import Enum, auto, unique
from typing import Tuple

from eth_typing import BLSPubkey, BLSSignature
from eth_utils import ValidationError

from remote_validator._utils.humanize import humanize_bytes, humanize_public_keys
from remote_validator.typing import (
    CommitteeIndex,
    CommitteeValidatorIndex,
    Epoch,
    Slot,
    ValidatorIndex,
)


@dataclass(eq=True, frozen=True)
class ValidatorDutiesRequest:
    epoch: Epoch
    public_keys: Tuple[BLSPubkey, ...]

    def __repr__(self) -> str:
        return (
            f"ValidatorDutiesRequest(epoch={self.epoch},"
            f" public_keys=({humanize_public_keys(self.public_keys)}))"
        )


@dataclass(eq=True, frozen=True)
class ValidatorDuties:
    """
    The assignments of one validator for one epoch, as computed by the beacon node.
    """

    validator_pubkey: BLSPubkey
    validator_index: ValidatorIndex
    attestation_slot: Slot
    attestation_committee_index: CommitteeIndex
    # position of the validator inside its committee
    attestation_committee_position: CommitteeValidatorIndex
    committee_length: int
    block_proposal_slots: Tuple[Slot, ...] = ()

    def __post_init__(self) -> None:
        if len(set(self.block_proposal_slots)) != len(self.block_proposal_slots):
            raise ValidationError(
                f"validator {humanize_bytes(self.validator_pubkey)} was assigned more than"
                f" one block proposal in a slot: {self.block_proposal_slots}"
            )
        if not 0 <= self.attestation_committee_position < self.committee_length:
            raise ValidationError(
                f"committee position {self.attestation_committee_position} is outside of"
                f" a committee of length {self.committee_length}"
            )

    def is_proposer_at(self, slot: Slot) -> bool:
        return slot in self.block_proposal_slots

    def is_attester_at(self, slot: Slot) -> bool:
        return self.attestation_slot == slot

    def __repr__(self) -> str:
        return (
            f"ValidatorDuties(validator_pubkey={humanize_bytes(self.validator_pubkey)},"
            f" validator_index={self.validator_index},"
            f" attestation_slot={self.attestation_slot},"
            f" attestation_committee_index={self.attestation_committee_index},"
            f" attestation_committee_position={self.attestation_committee_position},"
            f" committee_length={self.committee_length},"
            f" block_proposal_slots={self.block_proposal_slots})"
        )


@unique
class DutyType(Enum):
    Attestation = auto()
    BlockProposal = auto()
    Aggregation = auto()


@unique
class DutyOutcome(Enum):
    Submitted = auto()
    # nothing could be produced for the slot, e.g. the node is not synced
    Skipped = auto()
    # the node could not be reached in time; the slot is lost
    Missed = auto()
    # the node refused the signed artifact
    Rejected = auto()
    # the duty was already submitted once
    Duplicate = auto()


@dataclass(eq=True, frozen=True)
class Duty:
    """
    A ``Duty`` represents some work that needs to be performed on behalf of some
    validator at some slot, like signing an ``Attestation``.
    """

    validator_public_key: BLSPubkey
    slot: Slot
    duty_type: DutyType

    @property
    def submission_key(self) -> Tuple[DutyType, BLSPubkey, Slot]:
        return (self.duty_type, self.validator_public_key, self.slot)


@dataclass(eq=True, frozen=True)
class BlockProposalDuty(Duty):
    duty_type: DutyType = field(init=False, default=DutyType.BlockProposal)

    def __repr__(self) -> str:
        return (
            f"BlockProposalDuty(validator_public_key={humanize_bytes(self.validator_public_key)},"
            f" slot={self.slot})"
        )


@dataclass(eq=True, frozen=True)
class AttestationDuty(Duty):
    duty_type: DutyType = field(init=False, default=DutyType.Attestation)
    committee_index: CommitteeIndex
    committee_position: CommitteeValidatorIndex
    committee_length: int

    def __repr__(self) -> str:
        return (
            f"AttestationDuty(validator_public_key={humanize_bytes(self.validator_public_key)},"
            f" slot={self.slot},"
            f" committee_index={self.committee_index})"
        )


@dataclass(eq=True, frozen=True)
class AggregationDuty(Duty):
    duty_type: DutyType = field(init=False, default=DutyType.Aggregation)
    validator_index: ValidatorIndex
    committee_index: CommitteeIndex
    selection_proof: BLSSignature

    def __repr__(self) -> str:
        return (
            f"AggregationDuty(validator_public_key={humanize_bytes(self.validator_public_key)},"
            f" slot={self.slot},"
            f" committee_index={self.committee_index})"
        )
