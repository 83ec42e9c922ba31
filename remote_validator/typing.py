from typing import Any, NamedTuple, NewType, Sequence, Tuple

from eth_typing import Hash32

Slot = NewType("Slot", int)  # uint64
Epoch = NewType("Epoch", int)  # uint64


class Bitfield(Tuple[bool, ...]):
    def __new__(self, *args: Sequence[Any]) -> "Bitfield":
        return tuple.__new__(Bitfield, *args)

    def __str__(self) -> str:
        elems = map(lambda elem: "1" if elem else "0", self)
        return f"0b{''.join(elems)}"


CommitteeIndex = NewType("CommitteeIndex", int)  # uint64, a committee index at a slot
ValidatorIndex = NewType("ValidatorIndex", int)  # uint64, a validator registry index
CommitteeValidatorIndex = NewType(
    "CommitteeValidatorIndex", int
)  # uint64, the i-th position in a committee tuple

Version = NewType("Version", bytes)  # bytes of length 4

Root = NewType("Root", Hash32)  # a Merkle root

Graffiti = NewType("Graffiti", bytes)  # bytes of length 32


class ReorgNotification(NamedTuple):
    """
    The payload a beacon node pushes when its canonical head moves to a
    different branch.
    """

    best_block_root: Root
    best_slot: Slot
    common_ancestor_slot: Slot
