import hashlib

from eth_typing import BLSSignature

from remote_validator.constants import TARGET_AGGREGATORS_PER_COMMITTEE
from remote_validator.typing import Epoch, Slot


def compute_epoch_at_slot(slot: Slot, slots_per_epoch: int) -> Epoch:
    return Epoch(slot // slots_per_epoch)


def compute_start_slot_at_epoch(epoch: Epoch, slots_per_epoch: int) -> Slot:
    return Slot(epoch * slots_per_epoch)


def compute_end_slot_at_epoch(epoch: Epoch, slots_per_epoch: int) -> Slot:
    return Slot(compute_start_slot_at_epoch(Epoch(epoch + 1), slots_per_epoch) - 1)


def compute_aggregator_modulo(committee_length: int) -> int:
    return max(1, committee_length // TARGET_AGGREGATORS_PER_COMMITTEE)


def is_aggregator(committee_length: int, selection_proof: BLSSignature) -> bool:
    """
    A validator aggregates for its committee when the hash of its signature over
    the attestation slot (the "selection proof") falls into the bucket selected
    by the committee size.
    """
    modulo = compute_aggregator_modulo(committee_length)
    digest = hashlib.sha256(selection_proof).digest()
    return int.from_bytes(digest[0:8], "little") % modulo == 0
