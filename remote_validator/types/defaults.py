from remote_validator.typing import (
    Bitfield,
    CommitteeIndex,
    Epoch,
    Slot,
    ValidatorIndex,
)

# Defaults to emulate "zero types"
default_slot = Slot(0)
default_epoch = Epoch(0)
default_committee_index = CommitteeIndex(0)
default_validator_index = ValidatorIndex(0)
default_bitfield = Bitfield(tuple())
default_tuple = tuple()
