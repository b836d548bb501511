"""Builders turning a ClusterSnapshot into the per-invocation ClusterModel.

The builders are pure: they read the snapshot and return fresh nodes and
replicas. Every inconsistency in the snapshot is raised here, before any
placement starts.
"""

import logging
from collections import Counter
from collections import defaultdict
from dataclasses import dataclass
from dataclasses import field
from typing import Dict
from typing import List
from typing import Optional
from typing import Tuple

from replica_placement.errors import InputInconsistencyError
from replica_placement.interface import ClusterConfig
from replica_placement.interface import ClusterSnapshot
from replica_placement.interface import InstanceId
from replica_placement.interface import PartitionId
from replica_placement.interface import ResourceConfig
from replica_placement.interface import ResourceId
from replica_placement.models.assignable_node import AssignableNode
from replica_placement.models.assignable_replica import AssignableReplica
from replica_placement.state_model import StateModelDefinition

logger = logging.getLogger(__name__)

PartitionKey = Tuple[ResourceId, PartitionId]


@dataclass
class ClusterModel:
    """Everything one placement computation owns.

    ``replicas`` is in declaration order: resources as declared, partitions
    as declared, states by priority.
    """

    cluster_config: ClusterConfig
    nodes: Dict[InstanceId, AssignableNode]
    replicas: List[AssignableReplica]
    required_states: Dict[PartitionKey, Counter]
    resource_order: List[ResourceId] = field(default_factory=list)
    state_models: Dict[ResourceId, StateModelDefinition] = field(default_factory=dict)
    instance_group_tags: Dict[ResourceId, Optional[str]] = field(
        default_factory=dict
    )

    def replicas_by_partition(self) -> Dict[PartitionKey, List[AssignableReplica]]:
        grouped: Dict[PartitionKey, List[AssignableReplica]] = {}
        for replica in self.replicas:
            grouped.setdefault(replica.partition_key, []).append(replica)
        return grouped


def build_nodes(snapshot: ClusterSnapshot) -> Dict[InstanceId, AssignableNode]:
    """One node per live instance that has an instance configuration"""
    for instance_id, instance_config in snapshot.instance_configs.items():
        if instance_config.instance_id != instance_id:
            raise InputInconsistencyError(
                f"Instance config {instance_config.instance_id} is registered as "
                f"{instance_id}"
            )
    for instance_id, live_instance in snapshot.live_instances.items():
        if live_instance.instance_id != instance_id:
            raise InputInconsistencyError(
                f"Live instance {live_instance.instance_id} is registered as "
                f"{instance_id}"
            )

    nodes: Dict[InstanceId, AssignableNode] = {}
    for instance_id in sorted(snapshot.live_instances):
        instance_config = snapshot.instance_configs.get(instance_id)
        if instance_config is None:
            logger.warning(
                "Live instance %s has no instance config, skipping", instance_id
            )
            continue
        nodes[instance_id] = AssignableNode(snapshot.cluster_config, instance_config)
    return nodes


def _state_model_for(
    snapshot: ClusterSnapshot, resource: ResourceConfig
) -> StateModelDefinition:
    definition = snapshot.state_model_definitions.get(resource.state_model_ref)
    if definition is None:
        raise InputInconsistencyError(
            f"Resource {resource.resource_id} references state model "
            f"{resource.state_model_ref} which has no definition"
        )
    return definition


def _reported_states(
    snapshot: ClusterSnapshot,
) -> Dict[ResourceId, Dict[PartitionId, List[Tuple[InstanceId, str]]]]:
    """(instance, state) pairs reported per partition, in instance order"""
    reported: Dict[ResourceId, Dict[PartitionId, List[Tuple[InstanceId, str]]]] = (
        defaultdict(lambda: defaultdict(list))
    )
    live_states = sorted(
        snapshot.live_current_states(), key=lambda cs: (cs.instance_id, cs.resource_id)
    )
    for cs in live_states:
        resource = snapshot.resource_configs.get(cs.resource_id)
        if resource is None:
            raise InputInconsistencyError(
                f"Instance {cs.instance_id} reports resource {cs.resource_id} "
                "which has no resource config"
            )
        if cs.state_model_ref != resource.state_model_ref:
            raise InputInconsistencyError(
                f"Instance {cs.instance_id} reports {cs.resource_id} with state "
                f"model {cs.state_model_ref}, configured as "
                f"{resource.state_model_ref}"
            )
        definition = _state_model_for(snapshot, resource)
        for partition_id, state in cs.partition_states.items():
            if state not in definition.states:
                raise InputInconsistencyError(
                    f"Instance {cs.instance_id} reports {cs.resource_id}/"
                    f"{partition_id} in state {state} unknown to "
                    f"{definition.name}"
                )
            reported[cs.resource_id][partition_id].append((cs.instance_id, state))
    return reported


def _partition_order(
    resource: ResourceConfig, reported: Dict[PartitionId, List[Tuple[InstanceId, str]]]
) -> List[PartitionId]:
    if len(set(resource.partitions)) != len(resource.partitions):
        raise InputInconsistencyError(
            f"Resource {resource.resource_id} declares duplicate partitions"
        )
    if resource.partitions:
        undeclared = sorted(set(reported) - set(resource.partitions))
        if undeclared:
            logger.warning(
                "Resource %s has reported partitions %s that are not declared, "
                "ignoring them",
                resource.resource_id,
                undeclared,
            )
        return list(resource.partitions)
    return sorted(reported)


def _required_from_reports(
    resource: ResourceConfig,
    partition_id: PartitionId,
    definition: StateModelDefinition,
    reports: List[Tuple[InstanceId, str]],
) -> Counter:
    required = Counter(
        state for _, state in reports if state in definition.state_counts
    )
    for state, count in required.items():
        spec = definition.state_counts[state]
        if spec.isdigit() and count > int(spec):
            raise InputInconsistencyError(
                f"{resource.resource_id}/{partition_id} is reported in state "
                f"{state} by {count} instances, {definition.name} allows {spec}"
            )
    return required


def _eligible_node_count(
    nodes: Dict[InstanceId, AssignableNode],
    resource: ResourceConfig,
    partition_id: PartitionId,
    topology_aware: bool,
) -> int:
    """How many replicas of a partition could be placed at most, ignoring
    capacity: enabled nodes carrying the resource's tag that do not disable
    the partition, counted once per fault zone when topology is enforced"""
    eligible = [
        node
        for node in nodes.values()
        if node.enabled
        and not node.is_partition_disabled(resource.resource_id, partition_id)
        and (
            resource.instance_group_tag is None
            or resource.instance_group_tag in node.tags
        )
    ]
    if topology_aware:
        return len({node.zone_key for node in eligible})
    return len(eligible)


def build_cluster_model(snapshot: ClusterSnapshot) -> ClusterModel:
    cluster_config = snapshot.cluster_config
    nodes = build_nodes(snapshot)
    reported = _reported_states(snapshot)

    replicas: List[AssignableReplica] = []
    required_states: Dict[PartitionKey, Counter] = {}
    state_models: Dict[ResourceId, StateModelDefinition] = {}
    tags: Dict[ResourceId, Optional[str]] = {}

    for resource_id, resource in snapshot.resource_configs.items():
        if resource.resource_id != resource_id:
            raise InputInconsistencyError(
                f"Resource config {resource.resource_id} is registered as "
                f"{resource_id}"
            )
        if resource.replicas is not None and resource.replicas < 1:
            raise InputInconsistencyError(
                f"Resource {resource_id} declares {resource.replicas} replicas"
            )
        definition = _state_model_for(snapshot, resource)
        state_models[resource_id] = definition
        tags[resource_id] = resource.instance_group_tag
        resource_reports = reported.get(resource_id, {})

        for partition_id in _partition_order(resource, resource_reports):
            reports = resource_reports.get(partition_id, [])
            if resource.replicas is not None:
                eligible_nodes = _eligible_node_count(
                    nodes,
                    resource,
                    partition_id,
                    cluster_config.topology_aware_enabled,
                )
                required = definition.state_count_map(
                    resource.replicas, eligible_nodes
                )
            else:
                required = _required_from_reports(
                    resource, partition_id, definition, reports
                )
            if not required:
                logger.debug(
                    "No replica of %s/%s to place", resource_id, partition_id
                )
                continue
            required_states[(resource_id, partition_id)] = required

            # Match each replica with an instance reporting that state so the
            # movement preference can keep it in place
            reporters: Dict[str, List[InstanceId]] = defaultdict(list)
            for instance_id, state in reports:
                reporters[state].append(instance_id)
            for state in definition.assignable_states:
                for index in range(required.get(state, 0)):
                    current = reporters[state]
                    replicas.append(
                        AssignableReplica.from_config(
                            cluster_config,
                            resource,
                            partition_id,
                            state,
                            state_priority=definition.priority(state),
                            is_top_state=definition.is_top_state(state),
                            replica_index=index,
                            current_instance=current[index]
                            if index < len(current)
                            else None,
                        )
                    )

    logger.debug(
        "Built cluster model with %d nodes and %d replicas over %d resources",
        len(nodes),
        len(replicas),
        len(state_models),
    )
    return ClusterModel(
        cluster_config=cluster_config,
        nodes=nodes,
        replicas=replicas,
        required_states=required_states,
        resource_order=list(snapshot.resource_configs),
        state_models=state_models,
        instance_group_tags=tags,
    )
