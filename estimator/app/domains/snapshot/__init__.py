from estimator.app.domains.snapshot.assembler import (
    AssembledSnapshot,
    SnapshotAssembler,
    build_tree,
    snapshot_json_default,
)
from estimator.app.domains.snapshot.service import (
    SnapshotGenerationError,
    SnapshotService,
    build_snapshot_path,
    serialize_snapshot,
)

__all__ = [
    "AssembledSnapshot",
    "SnapshotAssembler",
    "build_tree",
    "snapshot_json_default",
    "SnapshotGenerationError",
    "SnapshotService",
    "build_snapshot_path",
    "serialize_snapshot",
]
