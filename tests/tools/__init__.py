import json

# Two zones, one node each, with a resource that fits and one that does not
mock_snapshot = json.loads(
    """
{
    "cluster_config": {
        "cluster_name": "orders",
        "instance_capacity_keys": ["cpu", "disk_gib"],
        "topology_aware_enabled": true
    },
    "instance_configs": {
        "node-a": {
            "instance_id": "node-a",
            "capacity": {"cpu": 8, "disk_gib": 100},
            "fault_zone_id": "us-east-1a"
        },
        "node-b": {
            "instance_id": "node-b",
            "capacity": {"cpu": 8, "disk_gib": 100},
            "fault_zone_id": "us-east-1b"
        }
    },
    "live_instances": {
        "node-a": {"instance_id": "node-a", "session_id": "1f0c"},
        "node-b": {"instance_id": "node-b", "session_id": "77ad"}
    },
    "current_states": [
        {
            "instance_id": "node-b",
            "session_id": "77ad",
            "resource_id": "orders",
            "partition_states": {"orders_0": "MASTER"}
        }
    ],
    "resource_configs": {
        "orders": {
            "resource_id": "orders",
            "partitions": ["orders_0", "orders_1"],
            "replicas": 2,
            "partition_capacity": {"DEFAULT": {"cpu": 2, "disk_gib": 20}}
        },
        "archive": {
            "resource_id": "archive",
            "state_model_ref": "OnlineOffline",
            "partitions": ["archive_0"],
            "replicas": 1,
            "partition_capacity": {"DEFAULT": {"cpu": 1, "disk_gib": 500}}
        }
    }
}
"""
)


def fitting_snapshot():
    """The mock snapshot without the resource that cannot fit"""
    snapshot = json.loads(json.dumps(mock_snapshot))
    del snapshot["resource_configs"]["archive"]
    return snapshot
