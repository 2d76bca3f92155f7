"""Run-metadata sidecar — writes run-metadata.json next to the synthesized template."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path

    from qbconfluence.model import ResourceGraph

from qbconfluence.model import Secret


def write_run_metadata(meta: dict[str, str], graph: ResourceGraph, out_path: Path) -> Path:
    """Write run-metadata.json to *out_path* and return the written path.

    Besides the caller's run facts, the file records where the graph was built for
    and which secrets still hold placeholder values.
    """
    from pathlib import Path as _Path

    document: dict[str, Any] = dict(meta)
    document["account"] = graph.context.account
    document["region"] = graph.context.region
    document["declarations"] = len(graph)
    document["pending_manual_replacement"] = [
        s.logical_id for s in graph.of_type(Secret) if s.requires_manual_replacement
    ]

    _Path(str(out_path)).mkdir(parents=True, exist_ok=True)
    out_file = _Path(str(out_path), "run-metadata.json")
    out_file.write_text(
        json.dumps(document, sort_keys=True, indent=2) + "\n",
        encoding="utf-8",
    )
    return out_file
