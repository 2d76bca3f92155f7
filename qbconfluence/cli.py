"""CLI entry point — build the resource graph and write it for the provisioning engine."""

from __future__ import annotations

import datetime
from pathlib import Path
from typing import Annotated

import typer

from qbconfluence.audit import GraphInvariantError
from qbconfluence.builder import build_from_config
from qbconfluence.config import ConfigurationError, apply_overrides, load_config
from qbconfluence.graph import build_dependency_graph, realization_waves, upstream
from qbconfluence.model import ResourceGraph, StackConfig
from qbconfluence.outputs.output_console import render_console
from qbconfluence.outputs.output_markdown import render_markdown
from qbconfluence.outputs.output_run_metadata import write_run_metadata
from qbconfluence.outputs.output_template import write_template

app = typer.Typer(no_args_is_help=True)

ConfigOption = Annotated[
    Path | None, typer.Option("--config", help="Path to qbconfluence.yml")
]
IdentityCenterOption = Annotated[
    str | None,
    typer.Option("--identity-center-instance-arn", help="IAM Identity Center instance ARN"),
]
HostUrlOption = Annotated[
    str | None, typer.Option("--confluence-host-url", help="Confluence base URL")
]
AccountOption = Annotated[
    str | None,
    typer.Option("--account", envvar="CDK_DEFAULT_ACCOUNT", help="Target AWS account"),
]
RegionOption = Annotated[
    str | None,
    typer.Option("--region", envvar="CDK_DEFAULT_REGION", help="Target AWS region"),
]
VerboseOption = Annotated[bool, typer.Option("--verbose", help="Enable verbose logging")]


@app.callback(invoke_without_command=True)
def _callback() -> None:
    """qbconfluence — Amazon Q Business with a Confluence data source."""


def _load(
    config_path: Path | None,
    identity_center_instance_arn: str | None,
    confluence_host_url: str | None,
    account: str | None,
    region: str | None,
    verbose: bool,
) -> tuple[StackConfig, ResourceGraph]:
    if verbose:
        import logging

        logging.basicConfig(level=logging.DEBUG)

    try:
        cfg = apply_overrides(
            load_config(config_path),
            identity_center_instance_arn=identity_center_instance_arn,
            confluence_host_url=confluence_host_url,
            account=account,
            region=region,
        )
        graph = build_from_config(cfg)
    except ConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise SystemExit(2)  # noqa: B904
    except GraphInvariantError as e:
        for v in e.violations:
            typer.echo(f"Error: [{v.rule_id}] {v.logical_id}: {v.message}", err=True)
        raise SystemExit(1)  # noqa: B904
    return cfg, graph


@app.command()
def synth(
    config_path: ConfigOption = None,
    identity_center_instance_arn: IdentityCenterOption = None,
    confluence_host_url: HostUrlOption = None,
    account: AccountOption = None,
    region: RegionOption = None,
    out: Annotated[Path, typer.Option("--out", help="Output directory")] = Path("cdk.out"),
    verbose: VerboseOption = False,
    no_mermaid: Annotated[
        bool, typer.Option("--no-mermaid", help="Suppress Mermaid diagram in resources.md")
    ] = False,
) -> None:
    """Build the resource graph and write the template and report."""
    cfg, graph = _load(
        config_path, identity_center_instance_arn, confluence_host_url, account, region, verbose
    )
    waves = realization_waves(build_dependency_graph(list(graph.resources), graph.edges()))

    run_meta: dict[str, str] = {
        "timestamp_utc": (
            datetime.datetime.now(datetime.UTC).isoformat().replace("+00:00", "Z")
        ),
        "stack_name": cfg.stack_name,
        "config_path": str(config_path.resolve()) if config_path else "none",
        "output_dir": str(out.resolve()),
    }

    render_console(graph, waves)

    try:
        template_path = write_template(graph, out, cfg.stack_name)
        typer.echo(f"Wrote CloudFormation template: {template_path.resolve()}")
    except Exception as e:
        typer.echo(f"Error writing template: {e}", err=True)
        raise

    try:
        md_path = render_markdown(graph, waves, out, run_meta, include_mermaid=not no_mermaid)
        typer.echo(f"Wrote report (MD): {md_path.resolve()}")
    except Exception as e:
        typer.echo(f"Error writing markdown: {e}", err=True)
        raise

    try:
        meta_path = write_run_metadata(run_meta, graph, out)
        typer.echo(f"Wrote run metadata (JSON): {meta_path.resolve()}")
    except Exception as e:
        typer.echo(f"Error writing run metadata: {e}", err=True)
        raise


@app.command()
def order(
    config_path: ConfigOption = None,
    identity_center_instance_arn: IdentityCenterOption = None,
    confluence_host_url: HostUrlOption = None,
    account: AccountOption = None,
    region: RegionOption = None,
    target: Annotated[
        str | None, typer.Option("--target", help="Only show what this declaration needs")
    ] = None,
    verbose: VerboseOption = False,
) -> None:
    """Print the creation order and realization waves."""
    _, graph = _load(
        config_path, identity_center_instance_arn, confluence_host_url, account, region, verbose
    )
    dependency_graph = build_dependency_graph(list(graph.resources), graph.edges())

    selected = graph.logical_ids()
    if target is not None:
        if target not in dependency_graph.nodes:
            typer.echo(f"Error: unknown declaration '{target}'", err=True)
            raise SystemExit(2)
        needed = upstream(dependency_graph, target) | {target}
        selected = [n for n in selected if n in needed]

    for i, logical_id in enumerate(selected, 1):
        typer.echo(f"{i:2d}. {logical_id} ({dependency_graph.nodes[logical_id].kind.value})")

    typer.echo("")
    for i, wave in enumerate(realization_waves(dependency_graph), 1):
        members = [w for w in wave if w in selected]
        if members:
            typer.echo(f"wave {i}: {', '.join(members)}")
