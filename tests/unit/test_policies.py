"""Tests for policy statement assembly."""

from __future__ import annotations

from qbconfluence import policies
from qbconfluence.model import (
    AttrRef,
    ConditionOperator,
    DeploymentContext,
    ManagedPolicy,
    PolicyDocument,
    PrincipalType,
    ResourceGraph,
    Role,
)

APP_ARN = AttrRef(logical_id="Application", attribute="ApplicationArn")
INDEX_ARN = AttrRef(logical_id="Index", attribute="IndexArn")


def _bundles(graph: ResourceGraph) -> dict[str, PolicyDocument]:
    bundles = {p.logical_id: p.document for p in graph.of_type(ManagedPolicy)}
    bundles["WebExperienceRole"] = graph.get("WebExperienceRole").assume_role_policy  # type: ignore[attr-defined]
    return bundles


class TestStatementPurpose:
    def test_four_bundles(self, graph: ResourceGraph) -> None:
        assert sorted(_bundles(graph)) == [
            "ApplicationPolicy",
            "ConfluenceDataSourcePolicy",
            "WebExperiencePolicy",
            "WebExperienceRole",
        ]

    def test_every_statement_named(self, graph: ResourceGraph) -> None:
        for document in _bundles(graph).values():
            assert all(document.sids())

    def test_sids_unique_per_bundle(self, graph: ResourceGraph) -> None:
        for name, document in _bundles(graph).items():
            sids = document.sids()
            assert len(sids) == len(set(sids)), name


class TestTrustScoping:
    def test_every_trust_statement_scoped(self, graph: ResourceGraph) -> None:
        roles = graph.of_type(Role)
        assert len(roles) == 3
        for role in roles:
            for s in role.assume_role_policy.statements:
                assert s.condition(ConditionOperator.STRING_EQUALS, "aws:SourceAccount") == (
                    graph.context.account
                )
                source_arn = s.condition(ConditionOperator.ARN_EQUALS, "aws:SourceArn") or (
                    s.condition(ConditionOperator.ARN_LIKE, "aws:SourceArn")
                )
                assert source_arn

    def test_application_trust_is_arn_like(self, context: DeploymentContext) -> None:
        (statement,) = policies.application_trust(context).statements
        assert statement.actions == ("sts:AssumeRole",)
        assert statement.principals[0].type == PrincipalType.SERVICE
        assert statement.principals[0].identifier == "qbusiness.amazonaws.com"
        assert statement.condition(ConditionOperator.ARN_LIKE, "aws:SourceArn") == (
            "arn:aws:qbusiness:us-east-1:123456789012:application/*"
        )

    def test_web_experience_trust_allows_set_context(self, context: DeploymentContext) -> None:
        document = policies.web_experience_trust(context, APP_ARN)
        assert [s.actions for s in document.statements] == [
            ("sts:AssumeRole",),
            ("sts:SetContext",),
        ]
        for s in document.statements:
            assert s.principals[0].identifier == "application.qbusiness.amazonaws.com"
            assert s.condition(ConditionOperator.ARN_EQUALS, "aws:SourceArn") == APP_ARN

    def test_data_source_trust_pinned_to_application(self, context: DeploymentContext) -> None:
        (statement,) = policies.data_source_trust(context, APP_ARN).statements
        assert statement.condition(ConditionOperator.ARN_EQUALS, "aws:SourceArn") == APP_ARN

    def test_condition_clauses_in_iam_shape(self, context: DeploymentContext) -> None:
        (statement,) = policies.data_source_trust(context, APP_ARN).statements
        assert statement.condition_clauses() == {
            "StringEquals": {"aws:SourceAccount": "123456789012"},
            "ArnEquals": {"aws:SourceArn": APP_ARN},
        }


class TestPermissionPolicies:
    def test_application_log_resources(self, context: DeploymentContext) -> None:
        document = policies.application_policy(context)
        by_sid = {s.sid: s for s in document.statements}
        create = by_sid["AmazonQApplicationCreateLogGroupPermission"]
        assert create.resources == (
            "arn:aws:logs:us-east-1:123456789012:log-group:/aws/qbusiness/*",
        )
        streams = by_sid["AmazonQApplicationLogStreamPermission"]
        assert streams.resources == (
            "arn:aws:logs:us-east-1:123456789012:log-group:/aws/qbusiness/*:log-stream:*",
        )
        metrics = by_sid["AmazonQApplicationPutMetricDataPermission"]
        assert metrics.condition(ConditionOperator.STRING_EQUALS, "cloudwatch:namespace") == (
            "AWS/QBusiness"
        )

    def test_web_experience_scoped_to_application(self) -> None:
        document = policies.web_experience_policy(APP_ARN)
        for s in document.statements:
            assert s.resources == (APP_ARN,)
        assert "qbusiness:ChatSync" in document.statements[0].actions
        assert len(document.statements[1].actions) == 20

    def test_data_source_resources(self, context: DeploymentContext) -> None:
        secret = AttrRef(logical_id="Secret", attribute="Ref")
        key = AttrRef(logical_id="QBusinessKey", attribute="Arn")
        document = policies.data_source_policy(
            context, secret_arn=secret, key_arn=key, index_arn=INDEX_ARN, application_arn=APP_ARN
        )
        by_sid = {s.sid: s for s in document.statements}
        assert by_sid["AllowsAmazonQToGetSecret"].resources == (secret,)
        assert by_sid["AllowsAmazonQToDecryptSecret"].resources == (key,)
        assert by_sid["AllowsAmazonQToDecryptSecret"].condition(
            ConditionOperator.STRING_LIKE, "kms:ViaService"
        ) == ("secretsmanager.*.amazonaws.com",)
        assert by_sid["AllowsAmazonQToIngestDocuments"].resources == (INDEX_ARN,)
        mapping = by_sid["AllowsAmazonQToIngestPrincipalMapping"].resources
        assert mapping == (APP_ARN, INDEX_ARN, INDEX_ARN.with_suffix("/data-source/*"))
        assert by_sid["AllowsAmazonQToGetS3Objects"].resources == ("arn:aws:s3:::bucket/*",)

    def test_key_policy_grants_account_root(self, context: DeploymentContext) -> None:
        (statement,) = policies.key_policy(context).statements
        assert statement.principals[0].type == PrincipalType.AWS
        assert statement.principals[0].identifier == "arn:aws:iam::123456789012:root"
