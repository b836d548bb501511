import logging
from typing import Dict
from typing import FrozenSet
from typing import List
from typing import Optional
from typing import Tuple

import numpy as np

from replica_placement.errors import CapacityError
from replica_placement.errors import InputInconsistencyError
from replica_placement.interface import CapacityKey
from replica_placement.interface import ClusterConfig
from replica_placement.interface import FailureReason
from replica_placement.interface import InstanceConfig
from replica_placement.interface import InstanceId
from replica_placement.interface import PartitionId
from replica_placement.interface import ResourceId
from replica_placement.models.assignable_replica import AssignableReplica
from replica_placement.models.assignable_replica import ReplicaKey

logger = logging.getLogger(__name__)

# ("zone", fault zone id) or ("instance", instance id)
ZoneKey = Tuple[str, str]


class AssignableNode:
    """Capacity ledger of one live instance for one placement computation.

    The remaining capacity is a numpy vector aligned with the cluster capacity
    keys, it only changes through ``assign`` and ``release``.
    """

    def __init__(self, cluster_config: ClusterConfig, instance_config: InstanceConfig):
        self.instance_id: InstanceId = instance_config.instance_id
        self._keys: Tuple[CapacityKey, ...] = tuple(
            cluster_config.instance_capacity_keys
        )

        unknown = set(instance_config.capacity) - set(self._keys)
        if unknown:
            raise InputInconsistencyError(
                f"Instance {self.instance_id} declares capacity keys "
                f"{sorted(unknown)} that are not cluster capacity keys "
                f"{list(self._keys)}"
            )
        self._total = np.array(
            [
                instance_config.capacity.get(
                    key, cluster_config.default_instance_capacity.get(key, 0)
                )
                for key in self._keys
            ],
            dtype=np.int64,
        )
        self._remaining = self._total.copy()
        self._top_state_used = np.zeros(len(self._keys), dtype=np.int64)

        self._max_partitions = cluster_config.max_partitions_per_instance
        self.enabled = (
            instance_config.enabled
            and self.instance_id not in cluster_config.disabled_instances
        )
        self._fault_zone_id = instance_config.fault_zone_id
        # Instances without a zone are a zone of their own, in a namespace no
        # configured zone can collide with
        self._zone_key: ZoneKey = (
            ("zone", self._fault_zone_id)
            if self._fault_zone_id is not None
            else ("instance", self.instance_id)
        )
        self._tags = frozenset(instance_config.tags)
        self._disabled_partitions: Dict[ResourceId, FrozenSet[PartitionId]] = dict(
            instance_config.disabled_partitions
        )
        self._assigned: Dict[ReplicaKey, AssignableReplica] = {}

    def __repr__(self):
        return (
            f"AssignableNode({self.instance_id}, zone={self._fault_zone_id}, "
            f"remaining={self.remaining_capacity_map})"
        )

    @property
    def fault_zone_id(self) -> Optional[str]:
        return self._fault_zone_id

    @property
    def zone_key(self) -> ZoneKey:
        return self._zone_key

    @property
    def tags(self) -> FrozenSet[str]:
        return self._tags

    @property
    def capacity_keys(self) -> Tuple[CapacityKey, ...]:
        return self._keys

    @property
    def assigned_count(self) -> int:
        return len(self._assigned)

    @property
    def assigned_replicas(self) -> List[AssignableReplica]:
        return list(self._assigned.values())

    @property
    def total_capacity_vector(self) -> np.ndarray:
        return self._total.copy()

    @property
    def remaining_capacity_map(self) -> Dict[CapacityKey, int]:
        return {key: int(v) for key, v in zip(self._keys, self._remaining)}

    def remaining_capacity(self, key: CapacityKey) -> int:
        return int(self._remaining[self._keys.index(key)])

    def total_capacity(self, key: CapacityKey) -> int:
        return int(self._total[self._keys.index(key)])

    def is_partition_disabled(
        self, resource_id: ResourceId, partition_id: PartitionId
    ) -> bool:
        return partition_id in self._disabled_partitions.get(resource_id, frozenset())

    def hosts_partition(
        self, resource_id: ResourceId, partition_id: PartitionId
    ) -> bool:
        return any(
            (r.resource_id, r.partition_id) == (resource_id, partition_id)
            for r in self._assigned.values()
        )

    def is_assigned(self, replica: AssignableReplica) -> bool:
        return replica.key in self._assigned

    def check(self, replica: AssignableReplica) -> Optional[FailureReason]:
        """Why this node cannot take the replica, None when it can"""
        if not self.enabled:
            return FailureReason.disabled
        if self.is_partition_disabled(replica.resource_id, replica.partition_id):
            return FailureReason.disabled
        if np.any(replica.demand_vector() > self._remaining):
            return FailureReason.capacity
        if 0 <= self._max_partitions <= self.assigned_count:
            return FailureReason.capacity
        return None

    def can_accommodate(self, replica: AssignableReplica) -> bool:
        return self.check(replica) is None

    def projected_headroom(self, replica: AssignableReplica) -> float:
        """One minus the highest utilization over the dimensions with any
        capacity, were the replica assigned here"""
        after = self._remaining - replica.demand_vector()
        sized = self._total > 0
        if not np.any(sized):
            return 0.0
        return float(np.min(after[sized] / self._total[sized]))

    def projected_top_state_usage(self, replica: AssignableReplica) -> float:
        """Highest share of a dimension taken by top state replicas, were the
        replica assigned here. Only top state replicas count."""
        after = self._top_state_used
        if replica.is_top_state:
            after = after + replica.demand_vector()
        sized = self._total > 0
        if not np.any(sized):
            return 0.0
        return float(np.max(after[sized] / self._total[sized]))

    def assign(self, replica: AssignableReplica) -> None:
        if self.is_assigned(replica):
            raise CapacityError(f"{replica} is already assigned to {self.instance_id}")
        reason = self.check(replica)
        if reason is not None:
            raise CapacityError(
                f"{self.instance_id} cannot accommodate {replica} ({reason}), "
                f"remaining {self.remaining_capacity_map} demand "
                f"{replica.demand_map(self._keys)}"
            )
        self._remaining = self._remaining - replica.demand_vector()
        if replica.is_top_state:
            self._top_state_used = self._top_state_used + replica.demand_vector()
        self._assigned[replica.key] = replica
        logger.debug(
            "Assigned %s to %s, remaining %s",
            replica,
            self.instance_id,
            self.remaining_capacity_map,
        )

    def release(self, replica: AssignableReplica) -> None:
        if not self.is_assigned(replica):
            raise CapacityError(f"{replica} is not assigned to {self.instance_id}")
        del self._assigned[replica.key]
        self._remaining = self._remaining + replica.demand_vector()
        if replica.is_top_state:
            self._top_state_used = self._top_state_used - replica.demand_vector()
        logger.debug("Released %s from %s", replica, self.instance_id)
