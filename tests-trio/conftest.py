import hashlib

from eth_typing import BLSSignature
import pytest
import trio

from remote_validator.validator_client.abc import SignerAPI
from remote_validator.validator_client.beacon_node import MockBeaconNode
from remote_validator.validator_client.clock import Clock
from remote_validator.validator_client.config import Config
from remote_validator.validator_client.duty import ValidatorDuties
from remote_validator.validator_client.duty_scheduler import DutyCoordinator
from remote_validator.validator_client.duty_store import DutyStore
from remote_validator.validator_client.reorg import ReorgEventTracker

PROPOSAL_SLOT_IN_EPOCH = 1
ATTESTATION_SLOT_IN_EPOCH = 2
COMMITTEE_INDEX = 3
# small enough that every member aggregates
COMMITTEE_LENGTH = 8


class FakeSigner(SignerAPI):
    """
    Produces deterministic signatures from the signed message so tests can
    recompute them.
    """

    @staticmethod
    def sign(public_key, *message_parts):
        digest = hashlib.sha256(public_key + b"".join(message_parts)).digest()
        return BLSSignature(digest * 3)

    async def sign_randao_reveal(self, public_key, epoch, fork_info):
        return self.sign(public_key, b"randao", epoch.to_bytes(8, "little"))

    async def sign_block(self, public_key, block, fork_info):
        return self.sign(public_key, b"block", block.hash_tree_root)

    async def sign_attestation_data(self, public_key, attestation_data, fork_info):
        return self.sign(public_key, b"attestation", attestation_data.hash_tree_root)

    async def sign_aggregation_slot(self, public_key, slot, fork_info):
        return self.sign(public_key, b"selection", slot.to_bytes(8, "little"))

    async def sign_aggregate_and_proof(self, public_key, aggregate_and_proof, fork_info):
        return self.sign(public_key, b"aggregate", aggregate_and_proof.hash_tree_root)


def mk_fixed_duty_fetcher(
    proposal_slot_in_epoch=PROPOSAL_SLOT_IN_EPOCH,
    attestation_slot_in_epoch=ATTESTATION_SLOT_IN_EPOCH,
):
    """
    Every validator proposes and attests at the same positions of every epoch.
    """

    def duty_fetcher(public_keys, target_epoch, slots_per_epoch):
        if target_epoch < 0:
            return ()
        start_slot = target_epoch * slots_per_epoch
        return tuple(
            ValidatorDuties(
                validator_pubkey=public_key,
                validator_index=index,
                attestation_slot=start_slot + attestation_slot_in_epoch,
                attestation_committee_index=COMMITTEE_INDEX,
                attestation_committee_position=index % COMMITTEE_LENGTH,
                committee_length=COMMITTEE_LENGTH,
                block_proposal_slots=(start_slot + proposal_slot_in_epoch,),
            )
            for index, public_key in enumerate(public_keys)
        )

    return duty_fetcher


@pytest.fixture
def slots_per_epoch():
    return 4


@pytest.fixture
def seconds_per_slot():
    return 6


@pytest.fixture
def public_keys():
    return tuple(bytes([i]) * 48 for i in range(1, 4))


@pytest.fixture
def public_key(public_keys):
    return public_keys[0]


@pytest.fixture
def signer():
    return FakeSigner()


@pytest.fixture
def beacon_node(slots_per_epoch):
    return MockBeaconNode(slots_per_epoch, duty_fetcher=mk_fixed_duty_fetcher())


@pytest.fixture
async def genesis_time():
    return int(trio.current_time())


@pytest.fixture
async def config(genesis_time, public_keys, slots_per_epoch, seconds_per_slot):
    return Config(
        genesis_time=genesis_time,
        public_keys=public_keys,
        slots_per_epoch=slots_per_epoch,
        seconds_per_slot=seconds_per_slot,
        request_timeout=1.0,
        duty_fetch_retries=2,
        retry_backoff=0.5,
        max_retry_backoff=1.0,
    )


@pytest.fixture
async def clock(config):
    return Clock.from_config(config, time_provider=trio.current_time)


@pytest.fixture
def reorg_tracker():
    return ReorgEventTracker()


@pytest.fixture
def duty_store():
    return DutyStore()


@pytest.fixture
async def coordinator(beacon_node, signer, duty_store, clock, config, reorg_tracker):
    return DutyCoordinator(
        beacon_node, signer, duty_store, clock, config, reorg_tracker=reorg_tracker
    )


@pytest.fixture
def proposal_slot_in_epoch():
    return PROPOSAL_SLOT_IN_EPOCH


@pytest.fixture
def attestation_slot_in_epoch():
    return ATTESTATION_SLOT_IN_EPOCH


@pytest.fixture
def committee_index():
    return COMMITTEE_INDEX


@pytest.fixture
def committee_length():
    return COMMITTEE_LENGTH
