import logging
from typing import Callable
from typing import Dict
from typing import Optional
from typing import Sequence

from replica_placement.algorithm.constraint_based import ConstraintBasedAlgorithm
from replica_placement.interface import AssignmentResult
from replica_placement.interface import ClusterSnapshot
from replica_placement.models.cluster_model import build_cluster_model

logger = logging.getLogger(__name__)

DEFAULT_ALGORITHM = "constraint_based"


class PlacementPlanner:
    """Runs one placement computation per call.

    Every call builds its own nodes and replicas from the snapshot, nothing
    is shared between calls. Callers must not run two computations for the
    same cluster at once and apply both results.
    """

    def __init__(self):
        self._algorithms: Dict[str, ConstraintBasedAlgorithm] = {}

    def register_algorithm(self, name: str, algorithm: ConstraintBasedAlgorithm):
        self._algorithms[name] = algorithm

    @property
    def algorithms(self) -> Sequence[str]:
        return list(self._algorithms.keys())

    def plan(
        self,
        snapshot: ClusterSnapshot,
        algorithm: str = DEFAULT_ALGORITHM,
        cancel: Optional[Callable[[], bool]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> AssignmentResult:
        if algorithm not in self._algorithms:
            raise ValueError(
                f"Unknown placement algorithm {algorithm}, "
                f"known algorithms are {self.algorithms}"
            )
        model = build_cluster_model(snapshot)
        logger.debug(
            "Planning %s with %s over %d nodes",
            snapshot.cluster_config.cluster_name,
            algorithm,
            len(model.nodes),
        )
        return self._algorithms[algorithm].calculate(
            model, cancel=cancel, timeout_seconds=timeout_seconds
        )


planner = PlacementPlanner()
planner.register_algorithm(DEFAULT_ALGORITHM, ConstraintBasedAlgorithm())
