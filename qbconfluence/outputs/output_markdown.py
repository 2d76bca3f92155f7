"""Markdown output — resources.md with declaration table and dependency diagram."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

from qbconfluence.model import DataSource, Resource, ResourceGraph, Role, Secret


def render_markdown(
    graph: ResourceGraph,
    waves: list[list[str]],
    out_path: Path,
    run_meta: dict[str, str],
    include_mermaid: bool = True,
) -> Path:
    """Write resources.md to *out_path* and return the written path."""
    from pathlib import Path as _Path

    lines: list[str] = []
    lines.append("# Q Business Confluence Stack\n")

    _run_metadata_section(lines, run_meta)
    _manual_steps_section(lines, graph)
    _declarations_section(lines, graph)
    if include_mermaid:
        _dependency_diagram(lines, graph)
    _waves_section(lines, waves)
    _trust_section(lines, graph)
    _data_source_section(lines, graph)

    _Path(str(out_path)).mkdir(parents=True, exist_ok=True)
    out_file = _Path(str(out_path), "resources.md")
    out_file.write_text("\n".join(lines), encoding="utf-8")
    return out_file


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------

def _run_metadata_section(lines: list[str], run_meta: dict[str, str]) -> None:
    lines.append("## Run Metadata\n")
    lines.append(f"- Timestamp (UTC): {run_meta.get('timestamp_utc', 'unknown')}")
    lines.append(f"- Stack: `{run_meta.get('stack_name', 'unknown')}`")
    lines.append(f"- Config path: `{run_meta.get('config_path', 'none')}`")
    lines.append(f"- Output directory: `{run_meta.get('output_dir', 'unknown')}`")
    lines.append("")


def _manual_steps_section(lines: list[str], graph: ResourceGraph) -> None:
    secrets = [s for s in graph.of_type(Secret) if s.requires_manual_replacement]
    if not secrets:
        return
    lines.append("## Manual Steps After Deployment\n")
    for secret in secrets:
        lines.append(
            f"- `{secret.logical_id}` holds placeholder values for `username`, `hostUrl` "
            "and `password`. Replace them with the Confluence credentials before the "
            "first sync."
        )
    lines.append("")


def _declarations_section(lines: list[str], graph: ResourceGraph) -> None:
    lines.append("## Declarations\n")
    lines.append("| # | Logical ID | Type | Depends on |")
    lines.append("|--:|------------|------|------------|")
    for i, resource in enumerate(graph.resources, 1):
        deps = ", ".join(f"`{d}`" for d in resource.depends_on()) or "-"
        lines.append(f"| {i} | `{resource.logical_id}` | {resource.kind.value} | {deps} |")
    lines.append("")


def _dependency_diagram(lines: list[str], graph: ResourceGraph) -> None:
    lines.append("## Dependency Graph\n")
    lines.append("```mermaid")
    lines.append("graph LR")
    for resource in graph.resources:
        lines.append(f"    {resource.logical_id}{_mermaid_shape(resource)}")
    for edge in graph.edges():
        lines.append(f"    {edge.from_id} -->|{edge.attribute}| {edge.to_id}")
    lines.append("```")
    lines.append("")


def _mermaid_shape(resource: Resource) -> str:
    label = f"{resource.logical_id}<br/>{resource.kind.value}"
    if isinstance(resource, Secret):
        return f'[("{label}")]'
    return f'["{label}"]'


def _waves_section(lines: list[str], waves: list[list[str]]) -> None:
    lines.append("## Realization Waves\n")
    lines.append(
        "Declarations in the same wave have no dependency on each other and may be "
        "realized in parallel once every earlier wave is complete.\n"
    )
    for i, wave in enumerate(waves, 1):
        lines.append(f"{i}. " + ", ".join(f"`{w}`" for w in wave))
    lines.append("")


def _trust_section(lines: list[str], graph: ResourceGraph) -> None:
    lines.append("## Role Trust\n")
    lines.append("| Role | Statement | Principal | Conditions |")
    lines.append("|------|-----------|-----------|------------|")
    for role in graph.of_type(Role):
        for statement in role.assume_role_policy.statements:
            principal = ", ".join(p.identifier for p in statement.principals)
            conditions = ", ".join(f"{c.operator.value} {c.key}" for c in statement.conditions)
            lines.append(
                f"| `{role.logical_id}` | {statement.sid} | {principal} | {conditions} |"
            )
    lines.append("")


def _data_source_section(lines: list[str], graph: ResourceGraph) -> None:
    for ds in graph.of_type(DataSource):
        endpoint = ds.configuration.connection_configuration.repository_endpoint_metadata
        lines.append(f"## Data Source `{ds.logical_id}`\n")
        lines.append(f"- Connector: {ds.configuration.type}")
        lines.append(f"- Host: {endpoint.host_url} ({endpoint.type}, {endpoint.auth_type})")
        lines.append(f"- Sync mode: {ds.configuration.sync_mode.value}")
        lines.append("")
        lines.append("| Category | Source field | Index field | Type | Date format |")
        lines.append("|----------|--------------|-------------|------|-------------|")
        for repo in ds.configuration.repository_configurations:
            for m in repo.field_mappings:
                lines.append(
                    f"| {repo.category.value} | {m.data_source_field_name} | {m.index_field_name} "
                    f"| {m.index_field_type.value} | {m.date_field_format or ''} |"
                )
        lines.append("")
