import argparse
import logging
import sys
from pathlib import Path
from typing import Any
from typing import Optional
from typing import Sequence

from pydantic import ValidationError

from replica_placement.errors import InputInconsistencyError
from replica_placement.errors import PlacementError
from replica_placement.errors import RebalanceCancelledError
from replica_placement.planner import planner
from replica_placement.snapshot import load_snapshot

logger = logging.getLogger(__name__)

EXIT_INCONSISTENT = 1
EXIT_PARTIAL = 2
EXIT_CANCELLED = 3
EXIT_INTERNAL = 4


def run(args: Any) -> int:
    try:
        snapshot = load_snapshot(args.snapshot)
        result = planner.plan(snapshot, timeout_seconds=args.timeout_seconds)
    except (OSError, ValidationError, InputInconsistencyError) as exp:
        print(f"ERROR: {args.snapshot}: {exp}", file=sys.stderr)
        return EXIT_INCONSISTENT
    except RebalanceCancelledError as exp:
        print(f"ERROR: {args.snapshot}: {exp}", file=sys.stderr)
        return EXIT_CANCELLED
    except PlacementError as exp:
        # Violations of the engine's own invariants
        logger.exception("Placement of %s failed", args.snapshot)
        print(f"ERROR: {args.snapshot}: internal error: {exp}", file=sys.stderr)
        return EXIT_INTERNAL

    output = result.model_dump_json(indent=2)
    print(output)
    if args.output_path is not None:
        with open(args.output_path, "wt", encoding="utf-8") as fd:
            fd.write(output)
            fd.write("\n")

    if not result.is_complete:
        for failure in result.failures:
            print(
                f"[{failure.resource_id}/{failure.partition_id}] "
                + ", ".join(f"{u.state}: {u.reason}" for u in failure.unplaced),
                file=sys.stderr,
            )
        return EXIT_PARTIAL
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="replica-place",
        description="Place the replicas of a cluster snapshot onto its live nodes",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "snapshot", type=Path, help="Path to the JSON form of a ClusterSnapshot"
    )
    parser.add_argument(
        "--output-path",
        type=Path,
        default=None,
        help="Also write the assignment result JSON to this file",
    )
    parser.add_argument(
        "--timeout-seconds",
        type=float,
        default=None,
        help="Abandon the placement if it runs longer than this",
    )
    parser.add_argument("--debug", action="store_true", help="Show verbose output")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
