import pytest

from replica_placement.algorithm.constraint_based import ConstraintBasedAlgorithm
from replica_placement.planner import DEFAULT_ALGORITHM
from replica_placement.planner import PlacementPlanner


@pytest.fixture
def placement_planner():
    """
    A planner of its own for each test, with the default algorithm registered.

    Tests that register extra algorithms never leak them into the module level
    planner used by the command line tool.
    """
    test_planner = PlacementPlanner()
    test_planner.register_algorithm(DEFAULT_ALGORITHM, ConstraintBasedAlgorithm())
    return test_planner
