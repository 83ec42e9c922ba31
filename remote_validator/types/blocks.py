from typing import Sequence, Type, TypeVar

from eth_typing import BLSSignature
from eth_utils import humanize_hash
from ssz.hashable_container import HashableContainer
from ssz.sedes import List, bytes32, bytes96, uint64

from remote_validator._utils.humanize import humanize_bytes
from remote_validator.constants import (
    EMPTY_GRAFFITI,
    EMPTY_SIGNATURE,
    MAX_ATTESTATIONS,
    ZERO_ROOT,
)
from remote_validator.typing import Graffiti, Root, Slot, ValidatorIndex

from .attestations import Attestation
from .defaults import default_slot, default_tuple, default_validator_index

TBeaconBlockBody = TypeVar("TBeaconBlockBody", bound="BeaconBlockBody")


class BeaconBlockBody(HashableContainer):
    """
    The parts of a block body the validator client inspects. Operations the
    client never touches (slashings, deposits, exits) stay opaque to it.
    """

    fields = [
        ("randao_reveal", bytes96),
        ("graffiti", bytes32),
        ("attestations", List(Attestation, MAX_ATTESTATIONS)),
    ]

    @classmethod
    def create(
        cls: Type[TBeaconBlockBody],
        *,
        randao_reveal: BLSSignature = EMPTY_SIGNATURE,
        graffiti: Graffiti = EMPTY_GRAFFITI,
        attestations: Sequence[Attestation] = default_tuple,
    ) -> TBeaconBlockBody:
        return super().create(
            randao_reveal=randao_reveal, graffiti=graffiti, attestations=attestations
        )

    @property
    def is_empty(self) -> bool:
        return self == BeaconBlockBody.create()

    def __str__(self) -> str:
        return (
            f"randao_reveal={humanize_bytes(self.randao_reveal)},"
            f" graffiti={humanize_hash(self.graffiti)},"
            f" attestations={len(self.attestations)}"
        )


default_beacon_block_body = BeaconBlockBody.create()

TBeaconBlock = TypeVar("TBeaconBlock", bound="BeaconBlock")


class BeaconBlock(HashableContainer):

    fields = [
        ("slot", uint64),
        ("proposer_index", uint64),
        ("parent_root", bytes32),
        ("state_root", bytes32),
        ("body", BeaconBlockBody),
    ]

    @classmethod
    def create(
        cls: Type[TBeaconBlock],
        *,
        slot: Slot = default_slot,
        proposer_index: ValidatorIndex = default_validator_index,
        parent_root: Root = ZERO_ROOT,
        state_root: Root = ZERO_ROOT,
        body: BeaconBlockBody = default_beacon_block_body,
    ) -> TBeaconBlock:
        return super().create(
            slot=slot,
            proposer_index=proposer_index,
            parent_root=parent_root,
            state_root=state_root,
            body=body,
        )

    def __str__(self) -> str:
        return (
            f"[hash_tree_root]={humanize_hash(self.hash_tree_root)},"
            f" slot={self.slot},"
            f" proposer_index={self.proposer_index},"
            f" parent_root={humanize_hash(self.parent_root)},"
            f" state_root={humanize_hash(self.state_root)},"
            f" body=({self.body})"
        )


default_beacon_block = BeaconBlock.create()

TSignedBeaconBlock = TypeVar("TSignedBeaconBlock", bound="SignedBeaconBlock")


class SignedBeaconBlock(HashableContainer):

    fields = [("message", BeaconBlock), ("signature", bytes96)]

    @classmethod
    def create(
        cls: Type[TSignedBeaconBlock],
        *,
        message: BeaconBlock = default_beacon_block,
        signature: BLSSignature = EMPTY_SIGNATURE,
    ) -> TSignedBeaconBlock:
        return super().create(message=message, signature=signature)

    @property
    def slot(self) -> Slot:
        return self.message.slot

    def __str__(self) -> str:
        return f"message=({self.message}), signature={humanize_bytes(self.signature)}"
