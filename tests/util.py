from collections import Counter
from typing import Dict
from typing import Tuple

import numpy as np

from replica_placement.interface import AssignmentResult
from replica_placement.interface import ClusterConfig
from replica_placement.interface import ClusterSnapshot
from replica_placement.models.cluster_model import build_cluster_model
from replica_placement.snapshot import ClusterSnapshotBuilder

SESSION_ID = "testSessionId"
INSTANCE_ID = "testInstanceId"
FAULT_ZONE_ID = "testZone"
INSTANCE_TAG = "TestTag"
CAPACITY = {"item1": 20, "item2": 40, "item3": 30}

RESOURCE1_DEMAND = {"item1": 3, "item2": 6}
RESOURCE2_DEMAND = {"item1": 5, "item2": 10}
RESOURCE4_DEMAND = {"item1": 90, "item2": 9}


def make_cluster_config(**overrides) -> ClusterConfig:
    settings = dict(
        cluster_name="testClusterConfigId",
        instance_capacity_keys=list(CAPACITY),
        default_partition_weights={key: 0 for key in CAPACITY},
        max_partitions_per_instance=5,
        topology_aware_enabled=True,
    )
    settings.update(overrides)
    return ClusterConfig(**settings)


def single_instance_builder(**config_overrides) -> ClusterSnapshotBuilder:
    """One live instance with TestResource/TestPartition disabled on it"""
    return (
        ClusterSnapshotBuilder()
        .with_cluster_config(make_cluster_config(**config_overrides))
        .with_instance(
            INSTANCE_ID,
            CAPACITY,
            fault_zone_id=FAULT_ZONE_ID,
            tags=[INSTANCE_TAG],
            disabled_partitions={"TestResource": ["TestPartition"]},
            session_id=SESSION_ID,
        )
    )


def with_reported_resource(
    builder: ClusterSnapshotBuilder,
    resource_id: str,
    demand: Dict[str, int],
    master_partition: str,
    slave_partition: str,
    instance_id: str = INSTANCE_ID,
) -> ClusterSnapshotBuilder:
    """A resource whose two partitions are reported MASTER and SLAVE"""
    return builder.with_resource(resource_id, demand).with_current_state(
        instance_id,
        resource_id,
        {master_partition: "MASTER", slave_partition: "SLAVE"},
    )


def two_resource_builder(**config_overrides) -> ClusterSnapshotBuilder:
    # Resource1: Partition1 MASTER, Partition2 SLAVE
    # Resource2: Partition3 MASTER, Partition4 SLAVE
    builder = single_instance_builder(**config_overrides)
    builder = with_reported_resource(
        builder, "Resource1", RESOURCE1_DEMAND, "Partition1", "Partition2"
    )
    return with_reported_resource(
        builder, "Resource2", RESOURCE2_DEMAND, "Partition3", "Partition4"
    )


def no_fit_builder() -> ClusterSnapshotBuilder:
    """Adds Resource4 whose partitions need more item1 than any node has"""
    return with_reported_resource(
        two_resource_builder(),
        "Resource4",
        RESOURCE4_DEMAND,
        "Partition7",
        "Partition8",
    )


def near_full_util_builder() -> ClusterSnapshotBuilder:
    """Adds Resource3, larger than the other two, and a second instance.

    Resource3: Partition5 MASTER, Partition6 SLAVE. Spreading the MASTERs
    by their share of capacity puts Resource3 MASTER on one instance and the
    two smaller MASTERs on the other.
    """
    builder = with_reported_resource(
        two_resource_builder(),
        "Resource3",
        {"item1": 9, "item2": 17},
        "Partition5",
        "Partition6",
    )
    return builder.with_instance(
        f"{INSTANCE_ID}2",
        CAPACITY,
        fault_zone_id=f"{FAULT_ZONE_ID}2",
        tags=[INSTANCE_TAG],
        session_id=SESSION_ID,
    )


def near_full_builder(resource_order=("Small1", "Small2", "Large")):
    """Two nodes of 10 units, resources of 5, 5 and 10 units.

    Only placing Large first fits everything: any order that places the two
    small resources first spreads them over both nodes.
    """
    demands = {"Small1": 5, "Small2": 5, "Large": 10}
    builder = (
        ClusterSnapshotBuilder()
        .with_cluster_config(
            ClusterConfig(instance_capacity_keys=["item1"], topology_aware_enabled=True)
        )
        .with_instance("node-a", {"item1": 10}, fault_zone_id="zone-a")
        .with_instance("node-b", {"item1": 10}, fault_zone_id="zone-b")
    )
    for resource_id in resource_order:
        builder = builder.with_resource(
            resource_id,
            {"item1": demands[resource_id]},
            partitions=[f"{resource_id}_0"],
            replicas=1,
        )
    return builder


def check_invariants(snapshot: ClusterSnapshot, result: AssignmentResult) -> None:
    """Assert every property an assignment result must hold for a snapshot"""
    model = build_cluster_model(snapshot)
    demand: Dict[Tuple[str, str], np.ndarray] = {
        r.partition_key: r.demand_vector() for r in model.replicas
    }
    used = {
        instance_id: np.zeros(len(node.capacity_keys), dtype=np.int64)
        for instance_id, node in model.nodes.items()
    }

    for resource_id, partitions in result.assignments.items():
        definition = model.state_models[resource_id]
        for partition_id, placements in partitions.items():
            states = Counter(p.state for p in placements)
            assert states == model.required_states[(resource_id, partition_id)]
            if definition.state_counts[definition.top_state] == "1":
                assert states[definition.top_state] == 1

            instances = [p.instance_id for p in placements]
            assert len(set(instances)) == len(instances)
            if snapshot.cluster_config.topology_aware_enabled:
                zones = [model.nodes[i].zone_key for i in instances]
                assert len(set(zones)) == len(zones)

            for instance_id in instances:
                node = model.nodes[instance_id]
                assert node.enabled
                assert not node.is_partition_disabled(resource_id, partition_id)
                used[instance_id] += demand[(resource_id, partition_id)]

    for failure in result.failures:
        assert failure.partition_id not in result.assignments.get(
            failure.resource_id, {}
        )

    for instance_id, node in model.nodes.items():
        total = node.total_capacity_vector
        assert np.all(used[instance_id] <= total)
        expected = dict(zip(node.capacity_keys, (total - used[instance_id]).tolist()))
        assert result.remaining_capacity[instance_id] == expected
