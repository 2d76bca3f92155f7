"""Resource graph builder — declares the Q Business / Confluence stack in creation order."""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeVar

from qbconfluence import policies
from qbconfluence.audit import GraphInvariantError, audit_graph
from qbconfluence.config import ConfigurationError, deployment_context, require
from qbconfluence.field_mappings import repository_configurations
from qbconfluence.graph import build_dependency_graph, topological_sort
from qbconfluence.logger import logger
from qbconfluence.model import (
    Application,
    ConfluenceConfiguration,
    ConnectionConfiguration,
    DataSource,
    DeploymentContext,
    EncryptionKey,
    GraphSettings,
    Index,
    ManagedPolicy,
    ReferenceResolutionError,
    RepositoryEndpointMetadata,
    Resource,
    ResourceGraph,
    Retriever,
    Role,
    Secret,
    WebExperience,
)

if TYPE_CHECKING:
    from qbconfluence.model import StackConfig

R = TypeVar("R", bound=Resource)


class _Assembler:
    """Accepts declarations only once everything they reference is declared."""

    def __init__(self) -> None:
        self._declared: dict[str, Resource] = {}

    def declare(self, resource: R) -> R:
        if resource.logical_id in self._declared:
            raise ReferenceResolutionError(f"{resource.logical_id} is declared twice")
        for ref in resource.references():
            upstream = self._declared.get(ref.logical_id)
            if upstream is None:
                raise ReferenceResolutionError(
                    f"{resource.logical_id} references {ref.logical_id} before it is declared"
                )
            if ref.attribute not in upstream.emits:
                raise ReferenceResolutionError(
                    f"{resource.logical_id} references '{ref.attribute}' which "
                    f"{ref.logical_id} ({upstream.kind}) does not emit"
                )
        self._declared[resource.logical_id] = resource
        logger.debug("Declared %s (%s)", resource.logical_id, resource.kind)
        return resource

    def resources(self) -> tuple[Resource, ...]:
        return tuple(self._declared.values())


def build_resource_graph(
    identity_center_instance_arn: str | None,
    confluence_host_url: str | None,
    context: DeploymentContext | None,
    settings: GraphSettings | None = None,
) -> ResourceGraph:
    """Declare the thirteen resources of the stack and return the linked graph.

    Both inputs are opaque: only their presence is checked. The build is pure and
    deterministic; nothing is realized here.
    """
    identity_center_instance_arn = require(
        "identity_center_instance_arn", identity_center_instance_arn
    )
    confluence_host_url = require("confluence_host_url", confluence_host_url)
    if context is None:
        raise ConfigurationError("Missing required input: deployment context")
    settings = settings or GraphSettings()

    a = _Assembler()

    # Connector credentials
    key = a.declare(
        EncryptionKey(
            logical_id="QBusinessKey",
            alias=settings.key_alias,
            pending_window_days=settings.key_pending_window_days,
            removal_policy=settings.key_removal_policy,
            key_policy=policies.key_policy(context),
        )
    )
    secret = a.declare(Secret(logical_id="Secret", encryption_key=key.ref("Arn")))

    # Application
    application_policy = a.declare(
        ManagedPolicy(
            logical_id="ApplicationPolicy",
            document=policies.application_policy(context),
        )
    )
    application_role = a.declare(
        Role(
            logical_id="ApplicationRole",
            assume_role_policy=policies.application_trust(context),
            managed_policy_arns=(application_policy.ref(),),
        )
    )
    application = a.declare(
        Application(
            logical_id="Application",
            display_name=settings.application_display_name,
            identity_center_instance_arn=identity_center_instance_arn,
            role_arn=application_role.ref("Arn"),
        )
    )
    application_id = application.ref("ApplicationId")
    application_arn = application.ref("ApplicationArn")

    index = a.declare(
        Index(
            logical_id="Index",
            type=settings.index_type,
            capacity_units=settings.index_capacity_units,
            application_id=application_id,
        )
    )
    a.declare(
        Retriever(
            logical_id="Retriever",
            application_id=application_id,
            index_id=index.ref("IndexId"),
        )
    )

    # Web experience
    web_experience_policy = a.declare(
        ManagedPolicy(
            logical_id="WebExperiencePolicy",
            document=policies.web_experience_policy(application_arn),
        )
    )
    web_experience_role = a.declare(
        Role(
            logical_id="WebExperienceRole",
            assume_role_policy=policies.web_experience_trust(context, application_arn),
            managed_policy_arns=(web_experience_policy.ref(),),
        )
    )
    a.declare(
        WebExperience(
            logical_id="WebExperience",
            application_id=application_id,
            role_arn=web_experience_role.ref("Arn"),
        )
    )

    # Confluence data source
    data_source_policy = a.declare(
        ManagedPolicy(
            logical_id="ConfluenceDataSourcePolicy",
            document=policies.data_source_policy(
                context,
                secret_arn=secret.ref(),
                key_arn=key.ref("Arn"),
                index_arn=index.ref("IndexArn"),
                application_arn=application_arn,
                bucket=settings.document_bucket,
            ),
        )
    )
    data_source_role = a.declare(
        Role(
            logical_id="ConfluenceDataSourceRole",
            assume_role_policy=policies.data_source_trust(context, application_arn),
            managed_policy_arns=(data_source_policy.ref(),),
        )
    )
    a.declare(
        DataSource(
            logical_id="ConfluenceDataSource",
            display_name=settings.data_source_display_name,
            application_id=application_id,
            index_id=index.ref("IndexId"),
            role_arn=data_source_role.ref("Arn"),
            configuration=ConfluenceConfiguration(
                secret_arn=secret.ref(),
                sync_mode=settings.sync_mode,
                connection_configuration=ConnectionConfiguration(
                    repository_endpoint_metadata=RepositoryEndpointMetadata(
                        host_url=confluence_host_url,
                    ),
                ),
                repository_configurations=repository_configurations(),
            ),
        )
    )

    graph = ResourceGraph(context=context, resources=a.resources())
    _validate(graph)
    logger.info("Built resource graph with %d declarations", len(graph))
    return graph


def build_from_config(config: StackConfig) -> ResourceGraph:
    """Build from a loaded :class:`StackConfig`; missing inputs raise ConfigurationError."""
    identity_center_instance_arn = require(
        "identity_center_instance_arn", config.identity_center_instance_arn
    )
    confluence_host_url = require("confluence_host_url", config.confluence_host_url)
    return build_resource_graph(
        identity_center_instance_arn,
        confluence_host_url,
        deployment_context(config),
        config.settings,
    )


def _validate(graph: ResourceGraph) -> None:
    dependency_graph = build_dependency_graph(list(graph.resources), graph.edges())
    order = topological_sort(dependency_graph)
    if order != graph.logical_ids():
        raise ReferenceResolutionError(
            "Declaration order is not a valid creation order: " + ", ".join(order)
        )

    violations = audit_graph(graph)
    if violations:
        raise GraphInvariantError(violations)
