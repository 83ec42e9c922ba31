from abc import ABC, abstractmethod
from typing import AbstractSet, AsyncContextManager, AsyncIterator, Optional, Tuple

from eth_typing import BLSPubkey, BLSSignature

from remote_validator.types.aggregate_and_proof import (
    AggregateAndProof,
    SignedAggregateAndProof,
)
from remote_validator.types.attestation_data import AttestationData
from remote_validator.types.attestations import Attestation
from remote_validator.types.blocks import BeaconBlock, SignedBeaconBlock
from remote_validator.types.forks import ForkInfo
from remote_validator.types.subnet_subscription import SubnetSubscription
from remote_validator.typing import (
    CommitteeIndex,
    Epoch,
    Graffiti,
    ReorgNotification,
    Root,
    Slot,
)
from remote_validator.validator_client.duty import (
    ValidatorDuties,
    ValidatorDutiesRequest,
)


class BeaconNodeAPI(AsyncContextManager["BeaconNodeAPI"]):
    """
    ``BeaconNodeAPI`` represents a remote beacon node the validator client
    can query for information about the beacon state and supply
    signed messages to.

    The ``create_*`` methods return ``None`` when the node cannot produce the
    requested artifact yet (e.g. it is not synced to the slot); that is an expected
    outcome and distinct from a failed request, which raises
    ``BeaconNodeRequestFailure``. The ``send_*`` and ``subscribe_*`` methods return
    nothing; they either complete or raise.
    """

    @abstractmethod
    async def get_fork(self) -> Optional[ForkInfo]:
        ...

    @abstractmethod
    async def get_duties(
        self, request: ValidatorDutiesRequest
    ) -> Tuple[ValidatorDuties, ...]:
        ...

    @abstractmethod
    async def create_unsigned_block(
        self,
        slot: Slot,
        randao_reveal: BLSSignature,
        graffiti: Optional[Graffiti] = None,
    ) -> Optional[BeaconBlock]:
        ...

    @abstractmethod
    async def send_signed_block(self, block: SignedBeaconBlock) -> None:
        ...

    @abstractmethod
    async def create_unsigned_attestation(
        self, slot: Slot, committee_index: CommitteeIndex
    ) -> Optional[Attestation]:
        ...

    @abstractmethod
    async def send_signed_attestation(self, attestation: Attestation) -> None:
        ...

    @abstractmethod
    async def create_aggregate(self, attestation_data_root: Root) -> Optional[Attestation]:
        ...

    @abstractmethod
    async def send_aggregate_and_proof(
        self, signed_aggregate_and_proof: SignedAggregateAndProof
    ) -> None:
        ...

    @abstractmethod
    async def subscribe_to_beacon_committee_for_aggregation(
        self, committee_index: CommitteeIndex, aggregation_slot: Slot
    ) -> None:
        ...

    @abstractmethod
    async def subscribe_to_persistent_subnets(
        self, subscriptions: AbstractSet[SubnetSubscription]
    ) -> None:
        ...

    @abstractmethod
    def reorg_notifications(self) -> AsyncIterator[ReorgNotification]:
        """
        Reorgs pushed by the node, in the order the node emits them.
        """
        ...


class SignerAPI(ABC):
    """
    The boundary to whatever holds the validator keys. Every method returns the
    signature only; the caller attaches it to a new signed object.
    """

    @abstractmethod
    async def sign_randao_reveal(
        self, public_key: BLSPubkey, epoch: Epoch, fork_info: ForkInfo
    ) -> BLSSignature:
        ...

    @abstractmethod
    async def sign_block(
        self, public_key: BLSPubkey, block: BeaconBlock, fork_info: ForkInfo
    ) -> BLSSignature:
        ...

    @abstractmethod
    async def sign_attestation_data(
        self,
        public_key: BLSPubkey,
        attestation_data: AttestationData,
        fork_info: ForkInfo,
    ) -> BLSSignature:
        ...

    @abstractmethod
    async def sign_aggregation_slot(
        self, public_key: BLSPubkey, slot: Slot, fork_info: ForkInfo
    ) -> BLSSignature:
        ...

    @abstractmethod
    async def sign_aggregate_and_proof(
        self,
        public_key: BLSPubkey,
        aggregate_and_proof: AggregateAndProof,
        fork_info: ForkInfo,
    ) -> BLSSignature:
        ...
