"""
Constraint based replica placement.

ALGORITHM
---------
Greedy placement of every replica, one partition at a time:

1. Resources are ordered by their total demand normalized by the cluster
   capacity, largest first, ties in declaration order. Partitions keep their
   declared order, replicas inside a partition go top state first.
2. Each replica is offered to every node. A node is a candidate when it is
   enabled, does not have the partition disabled, carries the resource's
   instance group tag, has the remaining capacity, does not host another
   replica of the partition and, with topology awareness, is not in a fault
   zone already used by the partition.
3. The best ranked candidate takes the replica (see ``scoring.rank_key``).
4. When no node is a candidate the replica is reported unplaced. The other
   replicas of the partition are still tried so the failure lists all of
   them, then the partition is released as a whole.
5. Every placed partition is checked against its state model requirement.

WHY LARGEST FIRST
-----------------
Near full utilization, small resources can fill the gaps left around large
ones but not the other way round. With two nodes of 10 units and resources
of 5, 5 and 10 units, declaration order spreads the two small ones over both
nodes and leaves no node with 10 units for the large one. Largest first puts
the large one on a node by itself and both small ones fit on the other.

Greedy placement does not backtrack across partitions. A snapshot that needs
backtracking to fit is reported as infeasible.
"""

import logging
import time
from collections import Counter
from typing import Callable
from typing import Dict
from typing import List
from typing import Optional
from typing import Tuple

from replica_placement.algorithm.constraints import furthest_reason
from replica_placement.algorithm.constraints import PartitionPeers
from replica_placement.algorithm.constraints import rejection_reason
from replica_placement.algorithm.scoring import rank_key
from replica_placement.algorithm.scoring import resource_weights
from replica_placement.errors import RebalanceCancelledError
from replica_placement.errors import StateModelViolationError
from replica_placement.interface import AssignmentResult
from replica_placement.interface import FailureReason
from replica_placement.interface import PartitionFailure
from replica_placement.interface import PartitionId
from replica_placement.interface import ReplicaPlacement
from replica_placement.interface import ResourceId
from replica_placement.interface import UnplacedReplica
from replica_placement.models.assignable_node import AssignableNode
from replica_placement.models.assignable_replica import AssignableReplica
from replica_placement.models.cluster_model import ClusterModel
from replica_placement.models.cluster_model import PartitionKey

logger = logging.getLogger(__name__)

Assignments = Dict[ResourceId, Dict[PartitionId, List[ReplicaPlacement]]]


class ConstraintBasedAlgorithm:
    def resource_weights(self, model: ClusterModel) -> Dict[ResourceId, float]:
        return resource_weights(model.nodes.values(), model.replicas)

    def sort_partitions(
        self, model: ClusterModel
    ) -> List[Tuple[PartitionKey, List[AssignableReplica]]]:
        grouped = model.replicas_by_partition()
        weights = self.resource_weights(model)
        declared = {r: i for i, r in enumerate(model.resource_order)}
        resources = sorted(
            {key[0] for key in grouped},
            key=lambda r: (-weights.get(r, 0.0), declared.get(r, len(declared)), r),
        )
        logger.debug(
            "Resource placement order %s",
            [(r, round(weights.get(r, 0.0), 4)) for r in resources],
        )
        rank = {r: i for i, r in enumerate(resources)}
        # grouped preserves the declared partition order
        partition_index = {key: i for i, key in enumerate(grouped)}
        ordered = sorted(
            grouped.items(), key=lambda kv: (rank[kv[0][0]], partition_index[kv[0]])
        )
        return [
            (key, sorted(replicas, key=lambda r: (r.state_priority, r.replica_index)))
            for key, replicas in ordered
        ]

    def calculate(
        self,
        model: ClusterModel,
        cancel: Optional[Callable[[], bool]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> AssignmentResult:
        """Place every replica of the model, mutating the model's nodes.

        Raises RebalanceCancelledError when ``cancel`` returns True or the
        timeout expires, checked before each replica.
        """
        deadline = None
        if timeout_seconds is not None:
            deadline = time.monotonic() + timeout_seconds
        config = model.cluster_config
        nodes = [model.nodes[i] for i in sorted(model.nodes)]

        assignments: Assignments = {}
        failures: List[PartitionFailure] = []
        for (resource_id, partition_id), replicas in self.sort_partitions(model):
            peers = PartitionPeers(
                instance_group_tag=model.instance_group_tags.get(resource_id),
                topology_aware=config.topology_aware_enabled,
            )
            placed: List[Tuple[AssignableReplica, AssignableNode]] = []
            unplaced: List[UnplacedReplica] = []

            for replica in replicas:
                _check_cancelled(cancel, deadline, replica)
                node, reason = self._select_node(
                    nodes, replica, peers, config.prefer_less_movement
                )
                if node is None:
                    unplaced.append(
                        UnplacedReplica(
                            state=replica.state,
                            reason=reason,
                            detail=_explain(reason, replica, peers, nodes),
                        )
                    )
                    continue
                node.assign(replica)
                peers.add(node)
                placed.append((replica, node))

            if unplaced:
                for replica, node in placed:
                    node.release(replica)
                failure = PartitionFailure(
                    resource_id=resource_id,
                    partition_id=partition_id,
                    unplaced=unplaced,
                )
                logger.warning(
                    "Could not place %s/%s: %s",
                    resource_id,
                    partition_id,
                    "; ".join(f"{u.state} {u.reason}: {u.detail}" for u in unplaced),
                )
                failures.append(failure)
                continue

            assignments.setdefault(resource_id, {})[partition_id] = [
                ReplicaPlacement(instance_id=node.instance_id, state=replica.state)
                for replica, node in placed
            ]

        self.verify_state_models(model, assignments)

        logger.info(
            "Placed %d partitions, %d partitions failed",
            sum(len(p) for p in assignments.values()),
            len(failures),
        )
        return AssignmentResult(
            assignments=assignments,
            failures=failures,
            remaining_capacity={
                node.instance_id: node.remaining_capacity_map for node in nodes
            },
        )

    @staticmethod
    def _select_node(
        nodes: List[AssignableNode],
        replica: AssignableReplica,
        peers: PartitionPeers,
        prefer_less_movement: bool,
    ) -> Tuple[Optional[AssignableNode], FailureReason]:
        candidates = []
        reasons = []
        for node in nodes:
            reason = rejection_reason(node, replica, peers)
            if reason is None:
                candidates.append(node)
            else:
                reasons.append(reason)
        if not candidates:
            return None, furthest_reason(reasons)

        best = min(
            candidates, key=lambda n: rank_key(n, replica, prefer_less_movement)
        )
        logger.debug(
            "Selected %s for %s out of %d candidates",
            best.instance_id,
            replica,
            len(candidates),
        )
        return best, FailureReason.capacity

    @staticmethod
    def verify_state_models(model: ClusterModel, assignments: Assignments) -> None:
        for resource_id, partitions in assignments.items():
            for partition_id, placements in partitions.items():
                required = model.required_states.get((resource_id, partition_id))
                assigned = Counter(p.state for p in placements)
                if required is None or assigned != required:
                    raise StateModelViolationError(
                        f"{resource_id}/{partition_id} was assigned states "
                        f"{dict(assigned)}, its state model requires "
                        f"{dict(required or {})}"
                    )
                instances = [p.instance_id for p in placements]
                if len(set(instances)) != len(instances):
                    raise StateModelViolationError(
                        f"{resource_id}/{partition_id} has several replicas on "
                        f"one instance: {instances}"
                    )


def _check_cancelled(
    cancel: Optional[Callable[[], bool]],
    deadline: Optional[float],
    replica: AssignableReplica,
) -> None:
    if cancel is not None and cancel():
        raise RebalanceCancelledError(f"Rebalance cancelled before placing {replica}")
    if deadline is not None and time.monotonic() > deadline:
        raise RebalanceCancelledError(f"Rebalance timed out before placing {replica}")


def _explain(
    reason: FailureReason,
    replica: AssignableReplica,
    peers: PartitionPeers,
    nodes: List[AssignableNode],
) -> str:
    if not nodes:
        return "no live instance to place on"
    if reason is FailureReason.capacity:
        return (
            "no enabled node has the remaining capacity or partition slots for "
            f"{replica.demand_map(nodes[0].capacity_keys)}"
        )
    if reason is FailureReason.topology:
        return (
            "nodes with capacity are in fault zones "
            f"{sorted(name for _, name in peers.fault_zones)} "
            "or already host this partition"
        )
    if reason is FailureReason.tag_mismatch:
        return f"no enabled node carries tag {peers.instance_group_tag}"
    return "every node is disabled or has the partition disabled"
