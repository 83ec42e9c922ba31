from typing import Type, TypeVar

from eth_typing import BLSSignature
from ssz.hashable_container import HashableContainer
from ssz.sedes import Bitlist, bytes96

from remote_validator._utils.humanize import humanize_bytes
from remote_validator.constants import EMPTY_SIGNATURE, MAX_VALIDATORS_PER_COMMITTEE
from remote_validator.typing import Bitfield

from .attestation_data import AttestationData, default_attestation_data
from .defaults import default_bitfield

TAttestation = TypeVar("TAttestation", bound="Attestation")


class Attestation(HashableContainer):

    fields = [
        ("aggregation_bits", Bitlist(MAX_VALIDATORS_PER_COMMITTEE)),
        ("data", AttestationData),
        ("signature", bytes96),
    ]

    @classmethod
    def create(
        cls: Type[TAttestation],
        aggregation_bits: Bitfield = default_bitfield,
        data: AttestationData = default_attestation_data,
        signature: BLSSignature = EMPTY_SIGNATURE,
    ) -> TAttestation:
        return super().create(
            aggregation_bits=aggregation_bits, data=data, signature=signature
        )

    def __str__(self) -> str:
        return (
            f"aggregation_bits={Bitfield(self.aggregation_bits)},"
            f" data=({self.data}),"
            f" signature={humanize_bytes(self.signature)}"
        )


default_attestation = Attestation.create()
