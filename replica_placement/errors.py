class PlacementError(Exception):
    """Base class for errors raised by the placement engine"""


class InputInconsistencyError(PlacementError, ValueError):
    """The snapshot is incomplete or contradicts itself, nothing was placed"""


class StateModelViolationError(PlacementError):
    """A committed assignment does not match its state model requirement.

    This is always a defect in the algorithm or its inputs.
    """


class CapacityError(PlacementError):
    """A node was asked to take a replica it cannot accommodate"""


class RebalanceCancelledError(PlacementError):
    """The computation was cancelled or timed out, its ledger is discarded"""
