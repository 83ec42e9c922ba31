from typing import Type, TypeVar

from eth_typing import BLSSignature
from ssz.hashable_container import HashableContainer
from ssz.sedes import bytes96, uint64

from remote_validator._utils.humanize import humanize_bytes
from remote_validator.constants import EMPTY_SIGNATURE
from remote_validator.typing import ValidatorIndex

from .attestations import Attestation, default_attestation
from .defaults import default_validator_index

TAggregateAndProof = TypeVar("TAggregateAndProof", bound="AggregateAndProof")


class AggregateAndProof(HashableContainer):

    fields = [
        ("aggregator_index", uint64),
        ("aggregate", Attestation),
        ("selection_proof", bytes96),
    ]

    @classmethod
    def create(
        cls: Type[TAggregateAndProof],
        aggregator_index: ValidatorIndex = default_validator_index,
        aggregate: Attestation = default_attestation,
        selection_proof: BLSSignature = EMPTY_SIGNATURE,
    ) -> TAggregateAndProof:
        return super().create(
            aggregator_index=aggregator_index,
            aggregate=aggregate,
            selection_proof=selection_proof,
        )

    def __str__(self) -> str:
        return (
            f"aggregator_index={self.aggregator_index},"
            f" aggregate=({self.aggregate}),"
            f" selection_proof={humanize_bytes(self.selection_proof)}"
        )


default_aggregate_and_proof = AggregateAndProof.create()

TSignedAggregateAndProof = TypeVar(
    "TSignedAggregateAndProof", bound="SignedAggregateAndProof"
)


class SignedAggregateAndProof(HashableContainer):

    fields = [("message", AggregateAndProof), ("signature", bytes96)]

    @classmethod
    def create(
        cls: Type[TSignedAggregateAndProof],
        message: AggregateAndProof = default_aggregate_and_proof,
        signature: BLSSignature = EMPTY_SIGNATURE,
    ) -> TSignedAggregateAndProof:
        return super().create(message=message, signature=signature)

    def __str__(self) -> str:
        return f"message=({self.message}), signature={humanize_bytes(self.signature)}"
