from typing import Dict
from typing import Iterable
from typing import Tuple

import numpy as np

from replica_placement.interface import ResourceId
from replica_placement.models.assignable_node import AssignableNode
from replica_placement.models.assignable_replica import AssignableReplica


def rank_key(
    node: AssignableNode, replica: AssignableReplica, prefer_less_movement: bool
) -> Tuple[int, float, float, int, str]:
    """Sort key over candidate nodes, the smallest key wins.

    Prefers, in order:

    * the node currently hosting the replica (only with the movement
      preference)
    * for a top state replica, the lowest share of capacity taken by top
      state replicas after the assignment, so leaders spread over nodes
    * the most headroom left after the assignment
    * the fewest assigned replicas
    * the lowest instance id
    """
    moved = 1
    if prefer_less_movement and replica.current_instance == node.instance_id:
        moved = 0
    top_state_usage = 0.0
    if replica.is_top_state:
        top_state_usage = node.projected_top_state_usage(replica)
    return (
        moved,
        top_state_usage,
        -node.projected_headroom(replica),
        node.assigned_count,
        node.instance_id,
    )


def resource_weights(
    nodes: Iterable[AssignableNode], replicas: Iterable[AssignableReplica]
) -> Dict[ResourceId, float]:
    """Total demand of each resource normalized by the cluster capacity.

    Each dimension contributes demand / cluster capacity so a resource heavy
    in a scarce dimension weighs more than one heavy in an abundant one.
    Dimensions without any cluster capacity are ignored.
    """
    node_list = list(nodes)
    demand: Dict[ResourceId, np.ndarray] = {}
    for replica in replicas:
        vector = replica.demand_vector()
        if replica.resource_id in demand:
            demand[replica.resource_id] = demand[replica.resource_id] + vector
        else:
            demand[replica.resource_id] = vector
    if not demand:
        return {}

    width = len(next(iter(demand.values())))
    capacity = np.zeros(width, dtype=np.int64)
    for node in node_list:
        if node.enabled:
            capacity = capacity + node.total_capacity_vector
    sized = capacity > 0

    weights: Dict[ResourceId, float] = {}
    for resource_id, total in demand.items():
        if not np.any(sized):
            weights[resource_id] = 0.0
            continue
        weights[resource_id] = float(np.sum(total[sized] / capacity[sized]))
    return weights
