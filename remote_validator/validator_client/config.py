from typing import Collection, Optional, Tuple

from cached_property import cached_property
from eth_typing import BLSPubkey

from remote_validator.constants import EMPTY_GRAFFITI
from remote_validator.typing import Graffiti

DEFAULT_BEACON_NODE_ENDPOINT = "http://127.0.0.1:5052"
DEFAULT_CLIENT_IDENTIFIER = "remote-validator"
DEFAULT_SLOTS_PER_EPOCH = 32
DEFAULT_SECONDS_PER_SLOT = 12
# seconds
DEFAULT_REQUEST_TIMEOUT = 4.0
DEFAULT_RETRY_BACKOFF = 0.5
DEFAULT_MAX_RETRY_BACKOFF = 4.0
DEFAULT_DUTY_FETCH_RETRIES = 3


class Config:
    """
    Represents data specific to a particular instance of a ``Client``.
    """

    def __init__(
        self,
        *,
        genesis_time: int,
        public_keys: Collection[BLSPubkey] = (),
        beacon_node_endpoint: str = DEFAULT_BEACON_NODE_ENDPOINT,
        slots_per_epoch: int = DEFAULT_SLOTS_PER_EPOCH,
        seconds_per_slot: int = DEFAULT_SECONDS_PER_SLOT,
        graffiti: Optional[Graffiti] = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        duty_fetch_retries: int = DEFAULT_DUTY_FETCH_RETRIES,
        retry_backoff: float = DEFAULT_RETRY_BACKOFF,
        max_retry_backoff: float = DEFAULT_MAX_RETRY_BACKOFF,
        client_identifier: str = DEFAULT_CLIENT_IDENTIFIER,
    ) -> None:
        if graffiti is not None and len(graffiti) > len(EMPTY_GRAFFITI):
            raise ValueError(
                f"graffiti is limited to {len(EMPTY_GRAFFITI)} bytes, got {len(graffiti)}"
            )
        if duty_fetch_retries < 0:
            raise ValueError("duty_fetch_retries must not be negative")

        self.genesis_time = genesis_time
        self.public_keys: Tuple[BLSPubkey, ...] = tuple(public_keys)
        self.beacon_node_endpoint = beacon_node_endpoint
        self.slots_per_epoch = slots_per_epoch
        self.seconds_per_slot = seconds_per_slot
        self.graffiti = graffiti
        self.request_timeout = request_timeout
        self.duty_fetch_retries = duty_fetch_retries
        self.retry_backoff = retry_backoff
        self.max_retry_backoff = max_retry_backoff
        self.client_identifier = client_identifier

    @cached_property
    def seconds_per_epoch(self) -> int:
        return self.slots_per_epoch * self.seconds_per_slot

    @cached_property
    def padded_graffiti(self) -> Optional[Graffiti]:
        if self.graffiti is None:
            return None
        return Graffiti(self.graffiti.ljust(len(EMPTY_GRAFFITI), b"\x00"))
