from __future__ import annotations

from enum import Enum
from typing import Dict
from typing import FrozenSet
from typing import List
from typing import NewType
from typing import Optional
from typing import Tuple

from pydantic import BaseModel
from pydantic import computed_field
from pydantic import ConfigDict
from pydantic import Field
from pydantic import NonNegativeInt

from replica_placement.state_model import BUILTIN_STATE_MODELS
from replica_placement.state_model import StateModelDefinition

InstanceId = NewType("InstanceId", str)
ResourceId = NewType("ResourceId", str)
PartitionId = NewType("PartitionId", str)
CapacityKey = NewType("CapacityKey", str)

# Partition capacity entry that applies to every partition of a resource
DEFAULT_PARTITION_KEY = "DEFAULT"


class ExcludeUnsetModel(BaseModel):
    def model_dump(self, *args, **kwargs):
        if "exclude_unset" not in kwargs:
            kwargs["exclude_unset"] = True
        return super().model_dump(*args, **kwargs)

    def model_dump_json(self, *args, **kwargs):
        if "exclude_unset" not in kwargs:
            kwargs["exclude_unset"] = True
        return super().model_dump_json(*args, **kwargs)


###############################################################################
#            Models (structs) for how we describe a cluster snapshot          #
###############################################################################


class ClusterConfig(ExcludeUnsetModel):
    """Cluster wide placement settings

    The capacity keys are ordered, every capacity vector the engine builds is
    aligned with that order.
    """

    cluster_name: str = "cluster"
    instance_capacity_keys: List[CapacityKey] = []
    default_partition_weights: Dict[CapacityKey, NonNegativeInt] = {}
    default_instance_capacity: Dict[CapacityKey, NonNegativeInt] = {}
    # Negative means unlimited
    max_partitions_per_instance: int = -1
    disabled_instances: FrozenSet[InstanceId] = frozenset()
    topology_aware_enabled: bool = False
    # Prefer the instance currently reporting a replica over every other
    # ranking criterion
    prefer_less_movement: bool = False

    model_config = ConfigDict(frozen=True)


class InstanceConfig(ExcludeUnsetModel):
    instance_id: InstanceId
    capacity: Dict[CapacityKey, NonNegativeInt] = {}
    tags: FrozenSet[str] = frozenset()
    # Instances without a zone are their own fault zone
    fault_zone_id: Optional[str] = None
    enabled: bool = True
    disabled_partitions: Dict[ResourceId, FrozenSet[PartitionId]] = {}

    model_config = ConfigDict(frozen=True)


class LiveInstance(ExcludeUnsetModel):
    instance_id: InstanceId
    session_id: str

    model_config = ConfigDict(frozen=True)


class CurrentState(ExcludeUnsetModel):
    """What one instance reports for one resource in one session"""

    instance_id: InstanceId
    session_id: str
    resource_id: ResourceId
    state_model_ref: str = "MasterSlave"
    partition_states: Dict[PartitionId, str] = {}

    model_config = ConfigDict(frozen=True)


class ResourceConfig(ExcludeUnsetModel):
    resource_id: ResourceId
    state_model_ref: str = "MasterSlave"
    # Declaration order of the partitions, when empty the partitions reported
    # in current state are used
    partitions: List[PartitionId] = []
    # When set every partition is placed with the replicas the state model
    # requires for this count, otherwise reported replicas are placed
    replicas: Optional[int] = None
    partition_capacity: Dict[str, Dict[CapacityKey, NonNegativeInt]] = {}
    instance_group_tag: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class ClusterSnapshot(ExcludeUnsetModel):
    """Point in time, read-only view of everything placement needs.

    Resource declaration order is the insertion order of ``resource_configs``.
    """

    cluster_config: ClusterConfig = ClusterConfig()
    instance_configs: Dict[InstanceId, InstanceConfig] = {}
    live_instances: Dict[InstanceId, LiveInstance] = {}
    current_states: List[CurrentState] = []
    resource_configs: Dict[ResourceId, ResourceConfig] = {}
    state_model_definitions: Dict[str, StateModelDefinition] = Field(
        default_factory=lambda: dict(BUILTIN_STATE_MODELS)
    )

    model_config = ConfigDict(frozen=True)

    def live_current_states(self) -> List[CurrentState]:
        """Current states reported in the instance's live session"""
        return [
            cs
            for cs in self.current_states
            if cs.instance_id in self.live_instances
            and self.live_instances[cs.instance_id].session_id == cs.session_id
        ]


###############################################################################
#                 Models (structs) for how we describe a result               #
###############################################################################


class FailureReason(str, Enum):
    """Why a replica could not be placed, by the furthest check any node
    passed before refusing it"""

    def __str__(self):
        return str(self.value)

    disabled = "disabled"
    tag_mismatch = "tag_mismatch"
    capacity = "capacity"
    topology = "topology"


class ReplicaPlacement(ExcludeUnsetModel):
    instance_id: InstanceId
    state: str

    model_config = ConfigDict(frozen=True)


class UnplacedReplica(ExcludeUnsetModel):
    state: str
    reason: FailureReason
    detail: str = ""

    model_config = ConfigDict(frozen=True)


class PartitionFailure(ExcludeUnsetModel):
    resource_id: ResourceId
    partition_id: PartitionId
    unplaced: List[UnplacedReplica] = []

    model_config = ConfigDict(frozen=True)

    @property
    def reasons(self) -> FrozenSet[FailureReason]:
        return frozenset(u.reason for u in self.unplaced)


class AssignmentResult(BaseModel):
    """Replica to node mapping for one rebalance cycle

    Partitions listed in ``failures`` have no entry in ``assignments``.
    """

    assignments: Dict[ResourceId, Dict[PartitionId, List[ReplicaPlacement]]] = {}
    failures: List[PartitionFailure] = []
    remaining_capacity: Dict[InstanceId, Dict[CapacityKey, int]] = {}

    model_config = ConfigDict(frozen=True)

    @computed_field(return_type=bool)  # type: ignore
    @property
    def is_complete(self) -> bool:
        return not self.failures

    def placements(
        self, resource_id: ResourceId, partition_id: PartitionId
    ) -> List[ReplicaPlacement]:
        return self.assignments.get(resource_id, {}).get(partition_id, [])

    def failed_partitions(self) -> List[Tuple[ResourceId, PartitionId]]:
        return [(f.resource_id, f.partition_id) for f in self.failures]

    def failure_for(
        self, resource_id: ResourceId, partition_id: PartitionId
    ) -> Optional[PartitionFailure]:
        for failure in self.failures:
            if (failure.resource_id, failure.partition_id) == (
                resource_id,
                partition_id,
            ):
                return failure
        return None
