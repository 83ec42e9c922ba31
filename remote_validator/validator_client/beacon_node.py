import logging
import math
import random
from types import TracebackType
from typing import (
    AbstractSet,
    Any,
    AsyncIterator,
    Callable,
    Collection,
    Dict,
    FrozenSet,
    List,
    Optional,
    Tuple,
    Type,
    TypeVar,
)

from asks import Session
from asks.errors import AsksException
from eth_typing import BLSPubkey, BLSSignature
from eth_utils import encode_hex, humanize_hash
import trio

from remote_validator._utils.humanize import humanize_bytes
from remote_validator.api.http.events import CHAIN_REORG_TOPIC, iter_reorg_notifications
from remote_validator.api.http.ir import (
    MALFORMED_PAYLOAD_ERRORS,
    marshal_container,
    marshal_duties_request,
    marshal_subnet_subscriptions,
    parse_container,
    parse_fork_info,
    parse_validator_duties,
)
from remote_validator.api.http.validator import Paths as BeaconNodePath
from remote_validator.constants import ZERO_ROOT
from remote_validator.exceptions import BeaconNodeRejection, BeaconNodeRequestFailure
from remote_validator.helpers import compute_start_slot_at_epoch
from remote_validator.types.aggregate_and_proof import SignedAggregateAndProof
from remote_validator.types.attestation_data import AttestationData
from remote_validator.types.attestations import Attestation
from remote_validator.types.blocks import (
    BeaconBlock,
    BeaconBlockBody,
    SignedBeaconBlock,
)
from remote_validator.types.forks import ForkInfo, default_fork
from remote_validator.types.subnet_subscription import SubnetSubscription
from remote_validator.typing import (
    Bitfield,
    CommitteeIndex,
    CommitteeValidatorIndex,
    Epoch,
    Graffiti,
    ReorgNotification,
    Root,
    Slot,
    ValidatorIndex,
)
from remote_validator.validator_client.abc import BeaconNodeAPI
from remote_validator.validator_client.config import Config
from remote_validator.validator_client.duty import (
    ValidatorDuties,
    ValidatorDutiesRequest,
)

CONNECTION_RETRY_INTERVAL = 5  # seconds

HTTP_NOT_FOUND = 404
HTTP_BAD_REQUEST = 400

T = TypeVar("T")


def _normalize_url(url: str) -> str:
    return url[:-1] if url.endswith("/") else url


def _describe_error(response: Any) -> str:
    try:
        return str(response.json().get("message", response.text))
    except (AttributeError, ValueError):
        return str(response.text)


def _check_status(response: Any, url: str) -> None:
    status = response.status_code
    if 200 <= status < 300:
        return
    if status == HTTP_BAD_REQUEST:
        raise BeaconNodeRejection(
            f"beacon node rejected request to {url}: {_describe_error(response)}"
        )
    raise BeaconNodeRequestFailure(
        f"beacon node responded to {url} with status {status}: {_describe_error(response)}"
    )


def _decode_data(response: Any, url: str) -> Any:
    try:
        return response.json()["data"]
    except (KeyError, TypeError, ValueError) as err:
        raise BeaconNodeRequestFailure(f"malformed response from {url}") from err


def _parse(data: Any, parser: Callable[[Any], T], description: str) -> T:
    try:
        return parser(data)
    except MALFORMED_PAYLOAD_ERRORS as err:
        raise BeaconNodeRequestFailure(f"malformed {description}: {err}") from err


class BeaconNode(BeaconNodeAPI):
    """
    A beacon node reached over its HTTP validator API.
    """

    logger = logging.getLogger("remote_validator.validator_client.beacon_node")

    def __init__(self, beacon_node_endpoint: str, session: Session = None) -> None:
        self._beacon_node_endpoint = _normalize_url(beacon_node_endpoint)
        self._session = session if session is not None else Session()
        self._connection_lock = trio.Lock()
        self._is_connected = False
        self.client_version: Optional[str] = None

    @classmethod
    def from_config(cls, config: Config) -> "BeaconNode":
        return cls(config.beacon_node_endpoint)

    def _url_for(self, path: BeaconNodePath) -> str:
        return self._beacon_node_endpoint + path.value

    async def __aenter__(self) -> BeaconNodeAPI:
        if self._is_connected:
            return self
        async with self._connection_lock:
            await self._connect()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_value: Optional[BaseException],
        traceback: Optional[TracebackType],
    ) -> None:
        self._is_connected = False

    async def _connect(self, retry: bool = True) -> None:
        """
        Verify the provided beacon node is reachable.
        """
        try:
            await self.load_client_version()
            self._is_connected = True
        except BeaconNodeRequestFailure as e:
            if retry:
                self.logger.warning(
                    "could not connect to beacon node at %s; retrying connection in %d seconds",
                    self._beacon_node_endpoint,
                    CONNECTION_RETRY_INTERVAL,
                )
                await trio.sleep(CONNECTION_RETRY_INTERVAL)
                await self._connect(retry=False)
            else:
                self.logger.error(e)
                raise

    async def load_client_version(self) -> None:
        """
        Reads the client version of the connected beacon node.
        Can be used for "ping"/"poke" methodology.
        """
        data = await self._get_optional(BeaconNodePath.node_version)
        if data is None:
            raise BeaconNodeRequestFailure(
                f"{self._beacon_node_endpoint} does not serve the validator API"
            )
        self.client_version = _parse(data, lambda d: str(d["version"]), "node version")
        self.logger.info(
            "Connected to a node with version identifier: %s", self.client_version
        )

    async def _request(
        self, method: str, path: BeaconNodePath, **kwargs: Any
    ) -> Any:
        url = self._url_for(path)
        try:
            return await self._session.request(method, url, **kwargs)
        except (OSError, AsksException, trio.BrokenResourceError) as err:
            raise BeaconNodeRequestFailure(f"{method} {url} failed: {err}") from err

    async def _get_optional(
        self, path: BeaconNodePath, params: Dict[str, str] = None
    ) -> Optional[Any]:
        url = self._url_for(path)
        response = await self._request("GET", path, params=params or {})
        if response.status_code == HTTP_NOT_FOUND:
            return None
        _check_status(response, url)
        return _decode_data(response, url)

    async def _post(self, path: BeaconNodePath, payload: Any) -> Any:
        url = self._url_for(path)
        response = await self._request("POST", path, json=payload)
        _check_status(response, url)
        return response

    async def get_fork(self) -> Optional[ForkInfo]:
        data = await self._get_optional(BeaconNodePath.fork)
        if data is None:
            return None
        return _parse(data, parse_fork_info, "fork info")

    async def get_duties(
        self, request: ValidatorDutiesRequest
    ) -> Tuple[ValidatorDuties, ...]:
        response = await self._post(
            BeaconNodePath.validator_duties, marshal_duties_request(request)
        )
        duties_data = _decode_data(response, self._url_for(BeaconNodePath.validator_duties))
        return _parse(
            duties_data,
            lambda data: tuple(map(parse_validator_duties, data)),
            f"duties for epoch {request.epoch}",
        )

    async def create_unsigned_block(
        self,
        slot: Slot,
        randao_reveal: BLSSignature,
        graffiti: Optional[Graffiti] = None,
    ) -> Optional[BeaconBlock]:
        params = {"slot": str(slot), "randao_reveal": encode_hex(randao_reveal)}
        if graffiti is not None:
            params["graffiti"] = encode_hex(graffiti)
        data = await self._get_optional(BeaconNodePath.block_proposal, params)
        if data is None:
            return None
        block = _parse(
            data, lambda d: parse_container(d, BeaconBlock), f"block at slot {slot}"
        )
        if block.slot != slot:
            raise BeaconNodeRequestFailure(
                f"requested a block for slot {slot} but received one for slot {block.slot}"
            )
        return block

    async def send_signed_block(self, block: SignedBeaconBlock) -> None:
        await self._post(BeaconNodePath.blocks, marshal_container(block))
        self.logger.debug(
            "sent block %s at slot %d", humanize_hash(block.message.hash_tree_root), block.slot
        )

    async def create_unsigned_attestation(
        self, slot: Slot, committee_index: CommitteeIndex
    ) -> Optional[Attestation]:
        data = await self._get_optional(
            BeaconNodePath.attestation,
            {"slot": str(slot), "committee_index": str(committee_index)},
        )
        if data is None:
            return None
        attestation = _parse(
            data,
            lambda d: parse_container(d, Attestation),
            f"attestation at slot {slot}",
        )
        if (
            attestation.data.slot != slot
            or attestation.data.index != committee_index
        ):
            raise BeaconNodeRequestFailure(
                f"requested an attestation for slot {slot} and committee {committee_index}"
                f" but received one for ({attestation.data})"
            )
        return attestation

    async def send_signed_attestation(self, attestation: Attestation) -> None:
        await self._post(BeaconNodePath.attestations, [marshal_container(attestation)])

    async def create_aggregate(self, attestation_data_root: Root) -> Optional[Attestation]:
        data = await self._get_optional(
            BeaconNodePath.aggregate_attestation,
            {"attestation_data_root": encode_hex(attestation_data_root)},
        )
        if data is None:
            return None
        aggregate = _parse(
            data, lambda d: parse_container(d, Attestation), "aggregate attestation"
        )
        if aggregate.data.hash_tree_root != attestation_data_root:
            raise BeaconNodeRequestFailure(
                f"requested an aggregate for {humanize_hash(attestation_data_root)}"
                f" but received one for {humanize_hash(aggregate.data.hash_tree_root)}"
            )
        return aggregate

    async def send_aggregate_and_proof(
        self, signed_aggregate_and_proof: SignedAggregateAndProof
    ) -> None:
        await self._post(
            BeaconNodePath.aggregate_and_proofs,
            [marshal_container(signed_aggregate_and_proof)],
        )

    async def subscribe_to_beacon_committee_for_aggregation(
        self, committee_index: CommitteeIndex, aggregation_slot: Slot
    ) -> None:
        await self._post(
            BeaconNodePath.beacon_committee_subscriptions,
            {
                "committee_index": str(committee_index),
                "aggregation_slot": str(aggregation_slot),
            },
        )

    async def subscribe_to_persistent_subnets(
        self, subscriptions: AbstractSet[SubnetSubscription]
    ) -> None:
        await self._post(
            BeaconNodePath.persistent_subnets_subscription,
            marshal_subnet_subscriptions(subscriptions),
        )

    async def reorg_notifications(self) -> AsyncIterator[ReorgNotification]:
        url = self._url_for(BeaconNodePath.events)
        response = await self._request(
            "GET",
            BeaconNodePath.events,
            params={"topics": CHAIN_REORG_TOPIC},
            headers={"Accept": "text/event-stream"},
            stream=True,
        )
        _check_status(response, url)
        self.logger.info("listening for reorgs reported by %s", self._beacon_node_endpoint)
        body = response.body
        try:
            async with body:
                async for notification in iter_reorg_notifications(body):
                    yield notification
        except (OSError, AsksException, trio.BrokenResourceError) as err:
            raise BeaconNodeRequestFailure(f"event stream from {url} broke: {err}") from err
        except MALFORMED_PAYLOAD_ERRORS as err:
            raise BeaconNodeRequestFailure(
                f"unreadable event stream from {url}: {err}"
            ) from err


DutyFetcher = Callable[[Collection[BLSPubkey], Epoch, int], Tuple[ValidatorDuties, ...]]

MAX_MOCK_COMMITTEE_LENGTH = 128
MAX_MOCK_COMMITTEES_PER_SLOT = 64
MOCK_PROPOSAL_PROBABILITY = 0.25


def _fetch_some_random_duties(
    public_keys: Collection[BLSPubkey], target_epoch: Epoch, slots_per_epoch: int
) -> Tuple[ValidatorDuties, ...]:
    """
    Duties are drawn from a generator seeded with the validator and the epoch so
    the same request always yields the same duties.
    """
    if target_epoch < 0:
        return ()
    start_slot = compute_start_slot_at_epoch(target_epoch, slots_per_epoch)
    duties: Tuple[ValidatorDuties, ...] = ()
    for public_key in public_keys:
        rng = random.Random(bytes(public_key) + target_epoch.to_bytes(8, "little"))
        committee_length = rng.randint(1, MAX_MOCK_COMMITTEE_LENGTH)
        if rng.random() < MOCK_PROPOSAL_PROBABILITY:
            block_proposal_slots: Tuple[Slot, ...] = (
                Slot(start_slot + rng.randrange(slots_per_epoch)),
            )
        else:
            block_proposal_slots = ()
        duties += (
            ValidatorDuties(
                validator_pubkey=public_key,
                validator_index=ValidatorIndex(int.from_bytes(public_key[:4], "little")),
                attestation_slot=Slot(start_slot + rng.randrange(slots_per_epoch)),
                attestation_committee_index=CommitteeIndex(
                    rng.randrange(MAX_MOCK_COMMITTEES_PER_SLOT)
                ),
                attestation_committee_position=CommitteeValidatorIndex(
                    rng.randrange(committee_length)
                ),
                committee_length=committee_length,
                block_proposal_slots=block_proposal_slots,
            ),
        )
    return duties


def _merge_aggregation_bits(left: Bitfield, right: Bitfield) -> Bitfield:
    return Bitfield(tuple(a or b for a, b in zip(left, right)))


class MockBeaconNode(BeaconNodeAPI):
    """
    An in-memory beacon node satisfying the ``BeaconNodeAPI``.

    Accepts custom logic to fetch duties with the ``duty_fetcher`` argument.
    Records everything submitted to it. Requests can be made to fail, to hang or
    to find an unsynced node, and reorgs can be pushed to the listener.
    """

    logger = logging.getLogger("remote_validator.validator_client.mock_beacon_node")

    def __init__(
        self,
        slots_per_epoch: int,
        duty_fetcher: DutyFetcher = _fetch_some_random_duties,
        fork_info: Optional[ForkInfo] = ForkInfo(default_fork, ZERO_ROOT),
    ) -> None:
        self._slots_per_epoch = slots_per_epoch
        self._duty_fetcher = duty_fetcher
        self.fork_info = fork_info
        self.head_root = ZERO_ROOT
        # ``None`` means the node can produce artifacts for any slot
        self.highest_producible_slot: Optional[Slot] = None
        self.fail_requests = 0
        self.response_delay = 0.0
        self.reject_submissions = False

        self.duty_requests: List[ValidatorDutiesRequest] = []
        self.published_blocks: List[SignedBeaconBlock] = []
        self.published_attestations: List[Attestation] = []
        self.published_aggregates: List[SignedAggregateAndProof] = []
        self.committee_subscriptions: List[Tuple[CommitteeIndex, Slot]] = []
        self.subnet_subscriptions: List[FrozenSet[SubnetSubscription]] = []

        self._reorg_sender, self._reorg_receiver = trio.open_memory_channel[
            ReorgNotification
        ](math.inf)

    @classmethod
    def from_config(cls, config: Config) -> "MockBeaconNode":
        return cls(config.slots_per_epoch)

    async def __aenter__(self) -> BeaconNodeAPI:
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_value: Optional[BaseException],
        traceback: Optional[TracebackType],
    ) -> None:
        pass

    async def _respond(self) -> None:
        if self.response_delay:
            await trio.sleep(self.response_delay)
        if self.fail_requests > 0:
            self.fail_requests -= 1
            raise BeaconNodeRequestFailure("injected beacon node failure")

    def _check_submission(self, description: str) -> None:
        if self.reject_submissions:
            raise BeaconNodeRejection(f"{description} was rejected")

    def _can_produce_at(self, slot: Slot) -> bool:
        return self.highest_producible_slot is None or slot <= self.highest_producible_slot

    async def get_fork(self) -> Optional[ForkInfo]:
        await self._respond()
        return self.fork_info

    async def get_duties(
        self, request: ValidatorDutiesRequest
    ) -> Tuple[ValidatorDuties, ...]:
        await self._respond()
        self.duty_requests.append(request)
        duties = self._duty_fetcher(
            request.public_keys, request.epoch, self._slots_per_epoch
        )
        self.logger.debug("%s: got duties %s", request, duties)
        return duties

    async def create_unsigned_block(
        self,
        slot: Slot,
        randao_reveal: BLSSignature,
        graffiti: Optional[Graffiti] = None,
    ) -> Optional[BeaconBlock]:
        await self._respond()
        if not self._can_produce_at(slot):
            return None
        if graffiti is None:
            body = BeaconBlockBody.create(randao_reveal=randao_reveal)
        else:
            body = BeaconBlockBody.create(randao_reveal=randao_reveal, graffiti=graffiti)
        return BeaconBlock.create(slot=slot, parent_root=self.head_root, body=body)

    async def send_signed_block(self, block: SignedBeaconBlock) -> None:
        await self._respond()
        self._check_submission(f"block at slot {block.slot}")
        self.logger.debug(
            "publishing block at slot %d with signature %s",
            block.slot,
            humanize_bytes(block.signature),
        )
        self.published_blocks.append(block)

    async def create_unsigned_attestation(
        self, slot: Slot, committee_index: CommitteeIndex
    ) -> Optional[Attestation]:
        await self._respond()
        if not self._can_produce_at(slot):
            return None
        return Attestation.create(
            data=AttestationData.create(
                slot=slot, index=committee_index, beacon_block_root=self.head_root
            )
        )

    async def send_signed_attestation(self, attestation: Attestation) -> None:
        await self._respond()
        self._check_submission(f"attestation at slot {attestation.data.slot}")
        self.logger.debug(
            "publishing attestation (%s) with signature %s",
            attestation.data,
            humanize_bytes(attestation.signature),
        )
        self.published_attestations.append(attestation)

    async def create_aggregate(self, attestation_data_root: Root) -> Optional[Attestation]:
        await self._respond()
        matching = tuple(
            attestation
            for attestation in self.published_attestations
            if attestation.data.hash_tree_root == attestation_data_root
        )
        if not matching:
            return None
        aggregation_bits = Bitfield(matching[0].aggregation_bits)
        for attestation in matching[1:]:
            aggregation_bits = _merge_aggregation_bits(
                aggregation_bits, Bitfield(attestation.aggregation_bits)
            )
        return Attestation.create(aggregation_bits=aggregation_bits, data=matching[0].data)

    async def send_aggregate_and_proof(
        self, signed_aggregate_and_proof: SignedAggregateAndProof
    ) -> None:
        await self._respond()
        self._check_submission("aggregate and proof")
        self.published_aggregates.append(signed_aggregate_and_proof)

    async def subscribe_to_beacon_committee_for_aggregation(
        self, committee_index: CommitteeIndex, aggregation_slot: Slot
    ) -> None:
        await self._respond()
        self.committee_subscriptions.append((committee_index, aggregation_slot))

    async def subscribe_to_persistent_subnets(
        self, subscriptions: AbstractSet[SubnetSubscription]
    ) -> None:
        await self._respond()
        self.subnet_subscriptions.append(frozenset(subscriptions))

    def emit_reorg(
        self, best_block_root: Root, best_slot: Slot, common_ancestor_slot: Slot
    ) -> None:
        self.head_root = best_block_root
        self._reorg_sender.send_nowait(
            ReorgNotification(best_block_root, best_slot, common_ancestor_slot)
        )

    async def reorg_notifications(self) -> AsyncIterator[ReorgNotification]:
        async for notification in self._reorg_receiver:
            yield notification
