from dataclasses import dataclass
from typing import Type, TypeVar

from eth_utils import humanize_hash
from ssz.hashable_container import HashableContainer
from ssz.sedes import bytes4, uint64

from remote_validator.constants import GENESIS_FORK_VERSION
from remote_validator.typing import Epoch, Root, Version

from .defaults import default_epoch

TFork = TypeVar("TFork", bound="Fork")


class Fork(HashableContainer):

    fields = [
        ("previous_version", bytes4),
        ("current_version", bytes4),
        # Epoch of latest fork
        ("epoch", uint64),
    ]

    @classmethod
    def create(
        cls: Type[TFork],
        previous_version: Version = GENESIS_FORK_VERSION,
        current_version: Version = GENESIS_FORK_VERSION,
        epoch: Epoch = default_epoch,
    ) -> TFork:
        return super().create(
            previous_version=previous_version,
            current_version=current_version,
            epoch=epoch,
        )

    def __str__(self) -> str:
        return (
            f"previous_version={self.previous_version.hex()},"
            f" current_version={self.current_version.hex()},"
            f" epoch={self.epoch}"
        )


default_fork = Fork.create()


@dataclass(eq=True, frozen=True)
class ForkInfo:
    """
    Everything a signer needs to compute signature domains on the chain
    the beacon node follows.
    """

    fork: Fork
    genesis_validators_root: Root

    def __repr__(self) -> str:
        return (
            f"ForkInfo(fork=({self.fork}),"
            f" genesis_validators_root={humanize_hash(self.genesis_validators_root)})"
        )
