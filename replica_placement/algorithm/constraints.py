from dataclasses import dataclass
from dataclasses import field
from typing import Iterable
from typing import Optional
from typing import Set

from replica_placement.interface import FailureReason
from replica_placement.interface import InstanceId
from replica_placement.models.assignable_node import AssignableNode
from replica_placement.models.assignable_node import ZoneKey
from replica_placement.models.assignable_replica import AssignableReplica

# How far a node got through the checks before refusing a replica
_STAGE = {
    FailureReason.disabled: 0,
    FailureReason.tag_mismatch: 1,
    FailureReason.capacity: 2,
    FailureReason.topology: 3,
}


@dataclass
class PartitionPeers:
    """Where the already placed replicas of the current partition live"""

    instance_group_tag: Optional[str] = None
    topology_aware: bool = False
    instances: Set[InstanceId] = field(default_factory=set)
    fault_zones: Set[ZoneKey] = field(default_factory=set)

    def add(self, node: AssignableNode) -> None:
        self.instances.add(node.instance_id)
        self.fault_zones.add(node.zone_key)


def rejection_reason(
    node: AssignableNode, replica: AssignableReplica, peers: PartitionPeers
) -> Optional[FailureReason]:
    """Hard constraints in order: disablement, instance group tag, capacity,
    topology. Returns None when the node is a valid candidate."""
    reason = node.check(replica)
    if reason is FailureReason.disabled:
        return reason
    if peers.instance_group_tag is not None and (
        peers.instance_group_tag not in node.tags
    ):
        return FailureReason.tag_mismatch
    if reason is not None:
        return reason
    # A node never hosts two replicas of one partition
    if node.instance_id in peers.instances or node.hosts_partition(
        replica.resource_id, replica.partition_id
    ):
        return FailureReason.topology
    if peers.topology_aware and node.zone_key in peers.fault_zones:
        return FailureReason.topology
    return None


def furthest_reason(reasons: Iterable[FailureReason]) -> FailureReason:
    """The failure to report when every node refused a replica.

    An empty cluster has no capacity at all.
    """
    return max(reasons, key=_STAGE.__getitem__, default=FailureReason.capacity)
