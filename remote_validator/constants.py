from eth_typing import BLSSignature, Hash32

from remote_validator.typing import Epoch, Graffiti, Root, Slot, Version

ZERO_HASH32 = Hash32(b"\x00" * 32)
ZERO_ROOT = Root(ZERO_HASH32)
EMPTY_SIGNATURE = BLSSignature(b"\x00" * 96)
EMPTY_GRAFFITI = Graffiti(b"\x00" * 32)
GENESIS_FORK_VERSION = Version(b"\x00" * 4)

GENESIS_SLOT = Slot(0)
GENESIS_EPOCH = Epoch(0)

MAX_VALIDATORS_PER_COMMITTEE = 2048
MAX_ATTESTATIONS = 128
TARGET_AGGREGATORS_PER_COMMITTEE = 16
