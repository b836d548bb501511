"""Assemble ClusterSnapshots.

``ClusterSnapshotBuilder`` never mutates itself, every ``with_*`` call
returns a new builder so a partially described cluster can be shared and
extended in several directions::

    base = (
        ClusterSnapshotBuilder()
        .with_cluster_config(ClusterConfig(instance_capacity_keys=["cpu"]))
        .with_instance("i-1", {"cpu": 10}, fault_zone_id="us-east-1a")
    )
    small = base.with_resource("db", {"cpu": 2}, partitions=["p0"], replicas=1)
    large = base.with_resource("db", {"cpu": 8}, partitions=["p0"], replicas=1)
    snapshot = small.build()

``load_snapshot`` reads the JSON form of a ``ClusterSnapshot``.
"""

import logging
from dataclasses import dataclass
from dataclasses import replace
from pathlib import Path
from typing import Dict
from typing import Iterable
from typing import Mapping
from typing import Optional
from typing import Sequence
from typing import Tuple

from replica_placement.interface import ClusterConfig
from replica_placement.interface import ClusterSnapshot
from replica_placement.interface import CurrentState
from replica_placement.interface import DEFAULT_PARTITION_KEY
from replica_placement.interface import InstanceConfig
from replica_placement.interface import LiveInstance
from replica_placement.interface import ResourceConfig
from replica_placement.state_model import BUILTIN_STATE_MODELS
from replica_placement.state_model import StateModelDefinition

logger = logging.getLogger(__name__)

DEFAULT_SESSION_ID = "session-0"


@dataclass(frozen=True)
class ClusterSnapshotBuilder:
    cluster_config: ClusterConfig = ClusterConfig()
    instances: Tuple[InstanceConfig, ...] = ()
    live_instances: Tuple[LiveInstance, ...] = ()
    resources: Tuple[ResourceConfig, ...] = ()
    current_states: Tuple[CurrentState, ...] = ()
    state_models: Tuple[StateModelDefinition, ...] = ()

    def with_cluster_config(self, cluster_config: ClusterConfig):
        return replace(self, cluster_config=cluster_config)

    def with_instance(
        self,
        instance_id: str,
        capacity: Mapping[str, int],
        *,
        fault_zone_id: Optional[str] = None,
        tags: Iterable[str] = (),
        enabled: bool = True,
        disabled_partitions: Optional[Mapping[str, Iterable[str]]] = None,
        live: bool = True,
        session_id: str = DEFAULT_SESSION_ID,
    ):
        instance = InstanceConfig(
            instance_id=instance_id,
            capacity=dict(capacity),
            tags=frozenset(tags),
            fault_zone_id=fault_zone_id,
            enabled=enabled,
            disabled_partitions={
                resource: frozenset(partitions)
                for resource, partitions in (disabled_partitions or {}).items()
            },
        )
        others = tuple(i for i in self.instances if i.instance_id != instance_id)
        live_instances = tuple(
            li for li in self.live_instances if li.instance_id != instance_id
        )
        if live:
            live_instances += (
                LiveInstance(instance_id=instance_id, session_id=session_id),
            )
        return replace(
            self, instances=others + (instance,), live_instances=live_instances
        )

    def with_resource(
        self,
        resource_id: str,
        capacity: Optional[Mapping[str, int]] = None,
        *,
        state_model_ref: str = "MasterSlave",
        partitions: Sequence[str] = (),
        replicas: Optional[int] = None,
        partition_capacity: Optional[Mapping[str, Mapping[str, int]]] = None,
        instance_group_tag: Optional[str] = None,
    ):
        """Add or replace a resource, ``capacity`` is the demand of every
        partition without its own entry in ``partition_capacity``"""
        capacities: Dict[str, Dict[str, int]] = {
            partition: dict(demand)
            for partition, demand in (partition_capacity or {}).items()
        }
        if capacity is not None:
            capacities[DEFAULT_PARTITION_KEY] = dict(capacity)
        resource = ResourceConfig(
            resource_id=resource_id,
            state_model_ref=state_model_ref,
            partitions=list(partitions),
            replicas=replicas,
            partition_capacity=capacities,
            instance_group_tag=instance_group_tag,
        )
        if any(r.resource_id == resource_id for r in self.resources):
            resources = tuple(
                resource if r.resource_id == resource_id else r
                for r in self.resources
            )
        else:
            resources = self.resources + (resource,)
        return replace(self, resources=resources)

    def with_current_state(
        self,
        instance_id: str,
        resource_id: str,
        partition_states: Mapping[str, str],
        *,
        session_id: Optional[str] = None,
        state_model_ref: Optional[str] = None,
    ):
        """Report partition states of a resource on an instance.

        The session defaults to the instance's live session and the state
        model to the resource's.
        """
        if session_id is None:
            session_id = next(
                (
                    li.session_id
                    for li in self.live_instances
                    if li.instance_id == instance_id
                ),
                DEFAULT_SESSION_ID,
            )
        if state_model_ref is None:
            state_model_ref = next(
                (
                    r.state_model_ref
                    for r in self.resources
                    if r.resource_id == resource_id
                ),
                "MasterSlave",
            )
        current_state = CurrentState(
            instance_id=instance_id,
            session_id=session_id,
            resource_id=resource_id,
            state_model_ref=state_model_ref,
            partition_states=dict(partition_states),
        )
        return replace(self, current_states=self.current_states + (current_state,))

    def with_state_model(self, definition: StateModelDefinition):
        return replace(self, state_models=self.state_models + (definition,))

    def build(self) -> ClusterSnapshot:
        state_models = dict(BUILTIN_STATE_MODELS)
        for definition in self.state_models:
            state_models[definition.name] = definition
        return ClusterSnapshot(
            cluster_config=self.cluster_config,
            instance_configs={i.instance_id: i for i in self.instances},
            live_instances={li.instance_id: li for li in self.live_instances},
            current_states=list(self.current_states),
            resource_configs={r.resource_id: r for r in self.resources},
            state_model_definitions=state_models,
        )


def load_snapshot(path: Path) -> ClusterSnapshot:
    with open(path, "rt", encoding="utf-8") as fd:
        snapshot = ClusterSnapshot.model_validate_json(fd.read())
    logger.debug(
        "Loaded snapshot of %s with %d instances and %d resources from %s",
        snapshot.cluster_config.cluster_name,
        len(snapshot.instance_configs),
        len(snapshot.resource_configs),
        path,
    )
    return snapshot
