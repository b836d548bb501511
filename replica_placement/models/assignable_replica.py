from dataclasses import dataclass
from dataclasses import field
from typing import Dict
from typing import Optional
from typing import Tuple

import numpy as np

from replica_placement.errors import InputInconsistencyError
from replica_placement.interface import CapacityKey
from replica_placement.interface import ClusterConfig
from replica_placement.interface import DEFAULT_PARTITION_KEY
from replica_placement.interface import InstanceId
from replica_placement.interface import PartitionId
from replica_placement.interface import ResourceConfig
from replica_placement.interface import ResourceId

# (resource, partition, state, replica index)
ReplicaKey = Tuple[ResourceId, PartitionId, str, int]


def resolve_demand(
    cluster_config: ClusterConfig,
    resource_config: ResourceConfig,
    partition_id: PartitionId,
) -> Tuple[int, ...]:
    """Capacity demand of one replica, aligned with the cluster capacity keys.

    Each dimension is taken from the first of: the partition's own entry, the
    resource's DEFAULT entry, the cluster default partition weight, zero.
    """
    keys = cluster_config.instance_capacity_keys
    partition_entry = resource_config.partition_capacity.get(partition_id, {})
    default_entry = resource_config.partition_capacity.get(DEFAULT_PARTITION_KEY, {})
    for entry in (partition_entry, default_entry):
        unknown = set(entry) - set(keys)
        if unknown:
            raise InputInconsistencyError(
                f"Resource {resource_config.resource_id} declares capacity keys "
                f"{sorted(unknown)} that are not cluster capacity keys {keys}"
            )

    demand = []
    for key in keys:
        if key in partition_entry:
            demand.append(partition_entry[key])
        elif key in default_entry:
            demand.append(default_entry[key])
        else:
            demand.append(cluster_config.default_partition_weights.get(key, 0))
    return tuple(demand)


@dataclass(frozen=True)
class AssignableReplica:
    """One replica of a partition in one state, the unit the algorithm places"""

    resource_id: ResourceId
    partition_id: PartitionId
    state: str
    # Position of the state in its state model, 0 is the top state
    state_priority: int
    is_top_state: bool
    replica_index: int = 0
    demand: Tuple[int, ...] = ()
    # Instance reporting this replica in current state
    current_instance: Optional[InstanceId] = field(default=None, compare=False)

    @classmethod
    def from_config(
        cls,
        cluster_config: ClusterConfig,
        resource_config: ResourceConfig,
        partition_id: PartitionId,
        state: str,
        state_priority: int,
        is_top_state: bool,
        replica_index: int = 0,
        current_instance: Optional[InstanceId] = None,
    ) -> "AssignableReplica":
        return cls(
            resource_id=resource_config.resource_id,
            partition_id=partition_id,
            state=state,
            state_priority=state_priority,
            is_top_state=is_top_state,
            replica_index=replica_index,
            demand=resolve_demand(cluster_config, resource_config, partition_id),
            current_instance=current_instance,
        )

    @property
    def key(self) -> ReplicaKey:
        return (self.resource_id, self.partition_id, self.state, self.replica_index)

    @property
    def partition_key(self) -> Tuple[ResourceId, PartitionId]:
        return (self.resource_id, self.partition_id)

    def demand_vector(self) -> np.ndarray:
        return np.array(self.demand, dtype=np.int64)

    def demand_map(self, keys: Tuple[CapacityKey, ...]) -> Dict[CapacityKey, int]:
        return dict(zip(keys, self.demand))

    def __str__(self):
        return (
            f"{self.resource_id}/{self.partition_id}/{self.state}"
            f"#{self.replica_index}"
        )
