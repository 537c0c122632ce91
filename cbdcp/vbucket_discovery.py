"""Decides which vBuckets this member of the group streams."""

from __future__ import annotations

from dataclasses import dataclass

from .helpers import chunk_slice
from .logger import get_logger
from .membership import (
    DYNAMIC_MEMBERSHIP_TYPE,
    KUBERNETES_HA_MEMBERSHIP_TYPE,
    KUBERNETES_STATEFUL_SET_MEMBERSHIP_TYPE,
    STATIC_MEMBERSHIP_TYPE,
    DynamicMembership,
    EventBus,
    HaMembership,
    Membership,
    StatefulSetMembership,
    StaticMembership,
)


@dataclass
class VBucketDiscoveryMetric:
    type: str = ""
    total_members: int = 0
    member_number: int = 0
    vbucket_count: int = 0
    vbucket_range_start: int = 0
    vbucket_range_end: int = 0


class VBucketDiscovery:
    """Splits the bucket's vBuckets between members and returns this member's share."""

    def __init__(
        self, membership: Membership, vbucket_number: int, membership_type: str = ""
    ) -> None:
        self.membership = membership
        self.vbucket_number = vbucket_number
        self.metric = VBucketDiscoveryMetric(
            type=membership_type, vbucket_count=vbucket_number
        )

    def get(self) -> list[int]:
        """Return the contiguous vBucket ids this member streams."""
        info = self.membership.get_info()
        if not 1 <= info.member_number <= info.total_members:
            raise ValueError(
                f"member number {info.member_number} is out of range "
                f"1..{info.total_members}"
            )

        share = list(
            chunk_slice(range(self.vbucket_number), info.total_members)[
                info.member_number - 1
            ]
        )
        if not share:
            raise ValueError(
                f"no vbuckets left for member {info.member_number}/{info.total_members}"
            )

        start, end = share[0], share[-1]
        get_logger().info(
            "member: %s/%s, vbucket range: %s-%s",
            info.member_number,
            info.total_members,
            start,
            end,
        )

        self.metric.total_members = info.total_members
        self.metric.member_number = info.member_number
        self.metric.vbucket_range_start = start
        self.metric.vbucket_range_end = end
        return share

    def close(self) -> None:
        self.membership.close()
        get_logger().debug("vbucket discovery closed")


def create_membership(
    membership_type: str,
    bus: EventBus | None = None,
    member_number: int = 1,
    total_members: int = 1,
) -> Membership:
    """Build the membership named by its configured type."""
    if membership_type == STATIC_MEMBERSHIP_TYPE:
        membership: Membership = StaticMembership(member_number, total_members)
    elif membership_type == KUBERNETES_STATEFUL_SET_MEMBERSHIP_TYPE:
        membership = StatefulSetMembership(total_members)
    elif membership_type in (KUBERNETES_HA_MEMBERSHIP_TYPE, DYNAMIC_MEMBERSHIP_TYPE):
        if bus is None:
            raise ValueError(f"membership {membership_type} needs an event bus")
        if membership_type == KUBERNETES_HA_MEMBERSHIP_TYPE:
            membership = HaMembership(bus)
        else:
            membership = DynamicMembership(bus)
    else:
        get_logger().error(
            "error while try to use membership: %s, err: unknown membership",
            membership_type,
        )
        raise ValueError(f"unknown membership: {membership_type}")

    get_logger().debug(
        "vbucket discovery opened with membership type: %s", membership_type
    )
    return membership