"""Tests for builder.build_resource_graph()."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from qbconfluence import policies
from qbconfluence.audit import GraphInvariantError, audit_graph
from qbconfluence.builder import _Assembler, build_from_config, build_resource_graph
from qbconfluence.config import ConfigurationError
from qbconfluence.model import (
    Application,
    AttrRef,
    DataSource,
    DeploymentContext,
    GraphSettings,
    Index,
    IndexType,
    PolicyDocument,
    PolicyStatement,
    Principal,
    PrincipalType,
    ReferenceResolutionError,
    ResourceGraph,
    Secret,
    StackConfig,
    SyncMode,
)

HOST_URL = "https://example.atlassian.net/"

EXPECTED_ORDER = [
    "QBusinessKey",
    "Secret",
    "ApplicationPolicy",
    "ApplicationRole",
    "Application",
    "Index",
    "Retriever",
    "WebExperiencePolicy",
    "WebExperienceRole",
    "WebExperience",
    "ConfluenceDataSourcePolicy",
    "ConfluenceDataSourceRole",
    "ConfluenceDataSource",
]


class TestShape:
    def test_thirteen_declarations_in_creation_order(self, graph: ResourceGraph) -> None:
        assert len(graph) == 13
        assert graph.logical_ids() == EXPECTED_ORDER

    def test_every_reference_points_backwards(self, graph: ResourceGraph) -> None:
        position = {logical_id: i for i, logical_id in enumerate(graph.logical_ids())}
        for resource in graph.resources:
            for ref in resource.references():
                assert position[ref.logical_id] < position[resource.logical_id]
                assert ref.attribute in graph.get(ref.logical_id).emits

    def test_declared_dependencies(self, graph: ResourceGraph) -> None:
        deps = {r.logical_id: set(r.depends_on()) for r in graph.resources}
        assert deps["QBusinessKey"] == set()
        assert deps["Secret"] == {"QBusinessKey"}
        assert deps["ApplicationPolicy"] == set()
        assert deps["ApplicationRole"] == {"ApplicationPolicy"}
        assert deps["Application"] == {"ApplicationRole"}
        assert deps["Index"] == {"Application"}
        assert deps["Retriever"] == {"Application", "Index"}
        assert deps["WebExperiencePolicy"] == {"Application"}
        assert deps["WebExperienceRole"] == {"Application", "WebExperiencePolicy"}
        assert deps["WebExperience"] == {"Application", "WebExperienceRole"}
        assert deps["ConfluenceDataSourcePolicy"] == {
            "Secret",
            "QBusinessKey",
            "Index",
            "Application",
        }
        assert deps["ConfluenceDataSourceRole"] == {"Application", "ConfluenceDataSourcePolicy"}
        assert deps["ConfluenceDataSource"] == {
            "Application",
            "Index",
            "Secret",
            "ConfluenceDataSourceRole",
        }

    def test_identity_center_reference_passed_through(self, graph: ResourceGraph) -> None:
        application = graph.of_type(Application)[0]
        assert application.identity_center_instance_arn == "R1"
        assert application.display_name == "CDK_QBusiness"
        assert application.role_arn == AttrRef(logical_id="ApplicationRole", attribute="Arn")


class TestDeterminism:
    def test_identical_inputs_identical_graphs(self, context: DeploymentContext) -> None:
        first = build_resource_graph("R1", HOST_URL, context)
        second = build_resource_graph("R1", HOST_URL, context)
        assert first == second
        assert first.edges() == second.edges()


class TestEndToEnd:
    def test_data_source_endpoint_and_index(self, graph: ResourceGraph) -> None:
        data_source = graph.of_type(DataSource)[0]
        endpoint = data_source.configuration.connection_configuration.repository_endpoint_metadata
        assert endpoint.model_dump(by_alias=True) == {
            "type": "SAAS",
            "hostUrl": "https://example.atlassian.net/",
            "authType": "Basic",
        }

        index = graph.of_type(Index)[0]
        assert graph.logical_ids().index(index.logical_id) == 5
        assert data_source.index_id == AttrRef(logical_id=index.logical_id, attribute="IndexId")

    def test_data_source_uses_secret(self, graph: ResourceGraph) -> None:
        data_source = graph.of_type(DataSource)[0]
        assert data_source.configuration.secret_arn == AttrRef(logical_id="Secret", attribute="Ref")
        assert data_source.configuration.sync_mode == SyncMode.FORCED_FULL_CRAWL
        assert data_source.configuration.type == "CONFLUENCEV2"

    def test_secret_is_placeholder(self, graph: ResourceGraph) -> None:
        secret = graph.of_type(Secret)[0]
        assert secret.requires_manual_replacement is True
        assert set(secret.secret_object()) == {"username", "hostUrl", "password"}
        assert all("change manually" in v for v in secret.secret_object().values())


class TestMissingInputs:
    def test_missing_identity_center_reference(self, context: DeploymentContext) -> None:
        with pytest.raises(ConfigurationError, match="identity_center_instance_arn"):
            build_resource_graph(None, HOST_URL, context)

    def test_blank_identity_center_reference(self, context: DeploymentContext) -> None:
        with pytest.raises(ConfigurationError, match="identity_center_instance_arn"):
            build_resource_graph("  ", HOST_URL, context)

    def test_missing_host_url(self, context: DeploymentContext) -> None:
        with pytest.raises(ConfigurationError, match="confluence_host_url"):
            build_resource_graph("R1", None, context)

    def test_missing_context(self) -> None:
        with pytest.raises(ConfigurationError, match="deployment context"):
            build_resource_graph("R1", HOST_URL, None)

    def test_missing_account_in_config(self) -> None:
        cfg = StackConfig(
            identity_center_instance_arn="R1", confluence_host_url=HOST_URL, region="us-east-1"
        )
        with pytest.raises(ConfigurationError, match="account"):
            build_from_config(cfg)


class TestSettings:
    def test_settings_flow_into_declarations(self, context: DeploymentContext) -> None:
        settings = GraphSettings(
            application_display_name="Docs",
            index_type=IndexType.ENTERPRISE,
            index_capacity_units=3,
            sync_mode=SyncMode.CHANGE_LOG,
        )
        graph = build_resource_graph("R1", HOST_URL, context, settings)
        assert graph.of_type(Application)[0].display_name == "Docs"
        index = graph.of_type(Index)[0]
        assert index.type == IndexType.ENTERPRISE
        assert index.capacity_units == 3
        assert graph.of_type(DataSource)[0].configuration.sync_mode == SyncMode.CHANGE_LOG

    def test_build_from_config(self) -> None:
        cfg = StackConfig(
            identity_center_instance_arn="R1",
            confluence_host_url=HOST_URL,
            account="111122223333",
            region="eu-west-1",
        )
        graph = build_from_config(cfg)
        assert graph.context.account == "111122223333"
        assert graph.context.region == "eu-west-1"


class TestAssembler:
    def test_forward_reference_rejected(self) -> None:
        a = _Assembler()
        with pytest.raises(ReferenceResolutionError, match="before it is declared"):
            a.declare(
                Secret(
                    logical_id="Secret",
                    encryption_key=AttrRef(logical_id="QBusinessKey", attribute="Arn"),
                )
            )

    def test_unknown_attribute_rejected(self, graph: ResourceGraph) -> None:
        a = _Assembler()
        a.declare(graph.get("QBusinessKey"))
        with pytest.raises(ReferenceResolutionError, match="does not emit"):
            a.declare(
                Secret(
                    logical_id="Secret",
                    encryption_key=AttrRef(logical_id="QBusinessKey", attribute="IndexArn"),
                )
            )

    def test_duplicate_declaration_rejected(self, graph: ResourceGraph) -> None:
        a = _Assembler()
        a.declare(graph.get("QBusinessKey"))
        with pytest.raises(ReferenceResolutionError, match="declared twice"):
            a.declare(graph.get("QBusinessKey"))

    def test_ref_checks_emitted_attributes(self, graph: ResourceGraph) -> None:
        with pytest.raises(ReferenceResolutionError):
            graph.get("Index").ref("ApplicationArn")


class TestImmutability:
    def test_trust_conditions_cannot_be_changed(self, graph: ResourceGraph) -> None:
        statement = graph.get("ConfluenceDataSourceRole").assume_role_policy.statements[0]
        with pytest.raises(AttributeError):
            statement.conditions.clear()  # type: ignore[attr-defined]
        with pytest.raises(ValidationError):
            statement.conditions[0].value = "*"  # type: ignore[misc]
        assert audit_graph(graph) == []

    def test_repository_configurations_cannot_be_changed(self, graph: ResourceGraph) -> None:
        configuration = graph.of_type(DataSource)[0].configuration
        assert isinstance(configuration.repository_configurations, tuple)
        with pytest.raises(ValidationError):
            configuration.repository_configurations = ()  # type: ignore[misc]

    def test_graph_is_hashable(self, graph: ResourceGraph, context: DeploymentContext) -> None:
        assert hash(graph) == hash(build_resource_graph("R1", HOST_URL, context))


def _open_trust(ctx: DeploymentContext, application_arn: AttrRef) -> PolicyDocument:
    return PolicyDocument(
        statements=(
            PolicyStatement(
                sid="Open",
                actions=("sts:AssumeRole",),
                principals=(
                    Principal(type=PrincipalType.SERVICE, identifier="qbusiness.amazonaws.com"),
                ),
            ),
        )
    )


class TestInvariantViolations:
    def test_unscoped_trust_rejected(
        self, context: DeploymentContext, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(policies, "data_source_trust", _open_trust)
        with pytest.raises(GraphInvariantError) as excinfo:
            build_resource_graph("R1", HOST_URL, context)
        violations = excinfo.value.violations
        assert [v.rule_id for v in violations] == [
            "trust-without-account",
            "trust-without-source-arn",
        ]
        assert {v.logical_id for v in violations} == {"ConfluenceDataSourceRole"}
