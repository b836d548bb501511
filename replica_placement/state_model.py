"""State models describe the roles a partition's replicas may hold and how
many replicas must hold each role.

Each built-in state model has a closed ``str`` enum of its labels, and a
``StateModelDefinition`` listing those labels in priority order (top state
first) with a count specification per counted state:

    * a positive integer, e.g. ``"1"`` for exactly one MASTER
    * ``"R"`` for the replicas left over once the other states are counted
    * ``"N"`` for one replica on every eligible node

States without a count specification (OFFLINE, DROPPED, ERROR) are never
placed.
"""

from collections import Counter
from enum import Enum
from typing import Dict
from typing import List
from typing import Type

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import model_validator

REMAINING_REPLICAS = "R"
ALL_NODES = "N"


class MasterSlaveState(str, Enum):
    def __str__(self):
        return str(self.value)

    MASTER = "MASTER"
    SLAVE = "SLAVE"
    OFFLINE = "OFFLINE"
    DROPPED = "DROPPED"
    ERROR = "ERROR"


class LeaderStandbyState(str, Enum):
    def __str__(self):
        return str(self.value)

    LEADER = "LEADER"
    STANDBY = "STANDBY"
    OFFLINE = "OFFLINE"
    DROPPED = "DROPPED"
    ERROR = "ERROR"


class OnlineOfflineState(str, Enum):
    def __str__(self):
        return str(self.value)

    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"
    DROPPED = "DROPPED"
    ERROR = "ERROR"


class StateModelDefinition(BaseModel):
    name: str
    # Highest priority first
    states: List[str]
    top_state: str
    initial_state: str = "OFFLINE"
    state_counts: Dict[str, str] = {}

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_states(self) -> "StateModelDefinition":
        if self.top_state not in self.states:
            raise ValueError(
                f"Top state {self.top_state} of {self.name} is not one of "
                f"{self.states}"
            )
        if self.initial_state not in self.states:
            raise ValueError(
                f"Initial state {self.initial_state} of {self.name} is not one "
                f"of {self.states}"
            )
        if self.top_state not in self.state_counts:
            raise ValueError(f"Top state {self.top_state} of {self.name} has no count")
        unbounded = 0
        for state, count in self.state_counts.items():
            if state not in self.states:
                raise ValueError(f"Counted state {state} is not part of {self.name}")
            if count in (REMAINING_REPLICAS, ALL_NODES):
                unbounded += 1
            elif not count.isdigit() or int(count) <= 0:
                raise ValueError(
                    f"Count {count!r} for {self.name}.{state} must be a positive "
                    f"integer, {REMAINING_REPLICAS!r} or {ALL_NODES!r}"
                )
        if unbounded > 1:
            raise ValueError(
                f"{self.name} may use {REMAINING_REPLICAS!r} or {ALL_NODES!r} "
                "for at most one state"
            )
        return self

    @property
    def assignable_states(self) -> List[str]:
        """Counted states in priority order"""
        return [s for s in self.states if s in self.state_counts]

    def priority(self, state: str) -> int:
        return self.states.index(state)

    def is_top_state(self, state: str) -> bool:
        return state == self.top_state

    def state_count_map(self, replicas: int, eligible_nodes: int) -> Counter:
        """How many replicas of a partition hold each state.

        Fixed counts are taken in priority order first, capped by the replica
        count, then the remaining replicas go to the ``R`` state. The ``N``
        state asks for one replica per eligible node instead, the caller
        decides which nodes are eligible for the partition.

        >>> MASTER_SLAVE.state_count_map(replicas=3, eligible_nodes=5)
        Counter({'SLAVE': 2, 'MASTER': 1})
        """
        counts: Counter = Counter()
        remaining = replicas
        for state in self.assignable_states:
            spec = self.state_counts[state]
            if spec == ALL_NODES:
                if eligible_nodes > 0:
                    counts[state] = eligible_nodes
                continue
            if spec == REMAINING_REPLICAS:
                continue
            count = min(int(spec), remaining)
            if count > 0:
                counts[state] = count
                remaining -= count
        for state in self.assignable_states:
            if self.state_counts[state] == REMAINING_REPLICAS and remaining > 0:
                counts[state] = remaining
        return counts


def _definition(
    name: str, labels: Type[Enum], top: Enum, counts: Dict[Enum, str]
) -> StateModelDefinition:
    return StateModelDefinition(
        name=name,
        states=[label.value for label in labels],
        top_state=top.value,
        initial_state="OFFLINE",
        state_counts={state.value: count for state, count in counts.items()},
    )


MASTER_SLAVE = _definition(
    "MasterSlave",
    MasterSlaveState,
    MasterSlaveState.MASTER,
    {MasterSlaveState.MASTER: "1", MasterSlaveState.SLAVE: REMAINING_REPLICAS},
)
LEADER_STANDBY = _definition(
    "LeaderStandby",
    LeaderStandbyState,
    LeaderStandbyState.LEADER,
    {LeaderStandbyState.LEADER: "1", LeaderStandbyState.STANDBY: REMAINING_REPLICAS},
)
ONLINE_OFFLINE = _definition(
    "OnlineOffline",
    OnlineOfflineState,
    OnlineOfflineState.ONLINE,
    {OnlineOfflineState.ONLINE: REMAINING_REPLICAS},
)

BUILTIN_STATE_MODELS: Dict[str, StateModelDefinition] = {
    d.name: d for d in (MASTER_SLAVE, LEADER_STANDBY, ONLINE_OFFLINE)
}
