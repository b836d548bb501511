from collections import Counter

import pytest
from pydantic import ValidationError

from replica_placement.state_model import BUILTIN_STATE_MODELS
from replica_placement.state_model import LEADER_STANDBY
from replica_placement.state_model import MASTER_SLAVE
from replica_placement.state_model import LeaderStandbyState
from replica_placement.state_model import MasterSlaveState
from replica_placement.state_model import ONLINE_OFFLINE
from replica_placement.state_model import OnlineOfflineState
from replica_placement.state_model import StateModelDefinition


def test_builtin_definitions():
    assert set(BUILTIN_STATE_MODELS) == {
        "MasterSlave",
        "LeaderStandby",
        "OnlineOffline",
    }
    assert MASTER_SLAVE.top_state == MasterSlaveState.MASTER
    assert MASTER_SLAVE.assignable_states == ["MASTER", "SLAVE"]
    assert LEADER_STANDBY.assignable_states == ["LEADER", "STANDBY"]
    assert ONLINE_OFFLINE.assignable_states == ["ONLINE"]
    for definition, labels in (
        (MASTER_SLAVE, MasterSlaveState),
        (LEADER_STANDBY, LeaderStandbyState),
        (ONLINE_OFFLINE, OnlineOfflineState),
    ):
        assert definition.states == [label.value for label in labels]


def test_labels_are_strings():
    assert MasterSlaveState.SLAVE == "SLAVE"
    assert f"{MasterSlaveState.SLAVE}" == "SLAVE"
    assert MasterSlaveState("MASTER") is MasterSlaveState.MASTER


@pytest.mark.parametrize(
    "replicas,expected",
    [
        (1, {"MASTER": 1}),
        (2, {"MASTER": 1, "SLAVE": 1}),
        (3, {"MASTER": 1, "SLAVE": 2}),
    ],
)
def test_master_slave_counts(replicas, expected):
    assert MASTER_SLAVE.state_count_map(replicas, eligible_nodes=10) == expected


def test_counts_are_not_capped_by_nodes():
    # Too few nodes is reported by placement, not hidden by the requirement
    assert MASTER_SLAVE.state_count_map(3, eligible_nodes=1) == Counter(
        {"MASTER": 1, "SLAVE": 2}
    )


def test_online_offline_counts():
    assert ONLINE_OFFLINE.state_count_map(3, eligible_nodes=5) == {"ONLINE": 3}


def test_all_nodes_count():
    everywhere = StateModelDefinition(
        name="Everywhere",
        states=["ONLINE", "OFFLINE"],
        top_state="ONLINE",
        state_counts={"ONLINE": "N"},
    )
    assert everywhere.state_count_map(1, eligible_nodes=4) == {"ONLINE": 4}
    assert everywhere.state_count_map(1, eligible_nodes=0) == {}


def test_fixed_counts_in_priority_order():
    definition = StateModelDefinition(
        name="Tiered",
        states=["PRIMARY", "SECONDARY", "TERTIARY", "OFFLINE"],
        top_state="PRIMARY",
        state_counts={"PRIMARY": "1", "SECONDARY": "2", "TERTIARY": "R"},
    )
    assert definition.state_count_map(2, eligible_nodes=9) == {
        "PRIMARY": 1,
        "SECONDARY": 1,
    }
    assert definition.state_count_map(5, eligible_nodes=9) == {
        "PRIMARY": 1,
        "SECONDARY": 2,
        "TERTIARY": 2,
    }
    assert definition.priority("TERTIARY") == 2
    assert definition.is_top_state("PRIMARY")


@pytest.mark.parametrize(
    "overrides,message",
    [
        ({"top_state": "LEADER"}, "Top state"),
        ({"initial_state": "GONE"}, "Initial state"),
        ({"state_counts": {"SLAVE": "R"}}, "has no count"),
        ({"state_counts": {"MASTER": "1", "GONE": "1"}}, "not part of"),
        ({"state_counts": {"MASTER": "0"}}, "positive integer"),
        ({"state_counts": {"MASTER": "N", "SLAVE": "R"}}, "at most one"),
    ],
)
def test_invalid_definitions(overrides, message):
    settings = dict(
        name="Broken",
        states=["MASTER", "SLAVE", "OFFLINE"],
        top_state="MASTER",
        state_counts={"MASTER": "1", "SLAVE": "R"},
    )
    settings.update(overrides)
    with pytest.raises(ValidationError, match=message):
        StateModelDefinition(**settings)
