from dataclasses import dataclass

from remote_validator.typing import Epoch, Slot

# The validator client acts with sub-slot granularity: blocks are proposed at the
# start of a slot, attestations one third into the slot and aggregates two thirds in.
TICKS_PER_SLOT = 3
BLOCK_PROPOSAL_TICK = 0
ATTESTATION_TICK = 1
AGGREGATION_TICK = 2


@dataclass(eq=True, frozen=True)
class Tick:
    t: float
    slot: Slot
    epoch: Epoch
    count: int  # non-negative counter for the tick w/in a slot

    def __repr__(self) -> str:
        return f"Tick({self.epoch},{self.slot},{self.count})"

    def is_at_genesis(self, genesis_time: int) -> bool:
        return int(self.t) == genesis_time and self.count == 0

    def slot_in_epoch(self, slots_per_epoch: int) -> Slot:
        return Slot(self.slot % slots_per_epoch)

    def is_first_in_slot(self) -> bool:
        return self.count == 0

    def is_first_in_epoch(self, slots_per_epoch: int) -> bool:
        return self.is_first_in_slot() and self.slot_in_epoch(slots_per_epoch) == 0
