from dataclasses import dataclass

from remote_validator.typing import CommitteeIndex, Epoch, Slot


@dataclass(eq=True, frozen=True)
class SubnetSubscription:
    """
    Interest in the gossip subnet of ``committee_index`` around ``slot``.

    Subscriptions are submitted as a set; equal subscriptions collapse into one.
    """

    committee_index: CommitteeIndex
    epoch: Epoch
    slot: Slot
    is_aggregator: bool
