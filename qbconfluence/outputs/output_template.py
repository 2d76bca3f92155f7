"""Template output — synthesizes the resource graph as an AWS CDK stack.

Every declaration becomes the matching CDK construct under its own logical id:
L2 constructs for the key, secret, managed policies and roles, and the
``aws_qbusiness`` L1 constructs for the Q Business resources. References between
declarations become CDK tokens, so the synthesized template carries
``Ref``/``Fn::GetAtt``/``Fn::Join`` exactly where the graph has an edge.
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Any, cast

from aws_cdk import (
    App,
    CfnResource,
    DefaultStackSynthesizer,
    Duration,
    Environment,
    SecretValue,
    Stack,
    Token,
    aws_iam as iam,
    aws_kms as kms,
    aws_qbusiness as qbusiness,
    aws_secretsmanager as secretsmanager,
)
from aws_cdk import RemovalPolicy as CdkRemovalPolicy
from constructs import Construct
from pydantic import BaseModel

from qbconfluence.logger import logger
from qbconfluence.model import (
    REF_ATTRIBUTE,
    Application,
    AttrRef,
    DataSource,
    EncryptionKey,
    Index,
    ManagedPolicy,
    PolicyDocument,
    PolicyStatement,
    Principal,
    PrincipalType,
    RemovalPolicy,
    Resource,
    ResourceGraph,
    Retriever,
    Role,
    Secret,
    WebExperience,
)

DEFAULT_STACK_NAME = "QBusinessConfluenceStack"

SECRET_DESCRIPTION = "Confluence connector credentials; placeholders until replaced manually"

_REMOVAL_POLICIES = {
    RemovalPolicy.DESTROY: CdkRemovalPolicy.DESTROY,
    RemovalPolicy.RETAIN: CdkRemovalPolicy.RETAIN,
}


class ResourceGraphStack(Stack):
    """One CDK stack holding every declaration of a :class:`ResourceGraph`."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        graph: ResourceGraph,
        description: str | None = None,
    ) -> None:
        super().__init__(
            scope,
            construct_id,
            description=description,
            env=Environment(account=graph.context.account, region=graph.context.region),
            synthesizer=DefaultStackSynthesizer(generate_bootstrap_version_rule=False),
        )
        self._elements: dict[str, CfnResource] = {}
        self._keys: dict[str, kms.Key] = {}
        self._managed_policies: dict[str, iam.ManagedPolicy] = {}

        manual_actions: list[str] = []
        for resource in graph.resources:
            element = self._declare(resource)
            element.override_logical_id(resource.logical_id)
            for upstream in resource.depends_on():
                element.add_dependency(self._elements[upstream])
            self._elements[resource.logical_id] = element

            if isinstance(resource, Secret) and resource.requires_manual_replacement:
                manual_actions.append(
                    f"Replace the placeholder values of secret {resource.logical_id} "
                    "(username, hostUrl, password) after deployment."
                )

        if manual_actions:
            self.template_options.metadata = {"ManualActions": manual_actions}

    def _declare(self, resource: Resource) -> CfnResource:
        if isinstance(resource, EncryptionKey):
            return self._key(resource)
        if isinstance(resource, Secret):
            return self._secret(resource)
        if isinstance(resource, ManagedPolicy):
            return self._managed_policy(resource)
        if isinstance(resource, Role):
            return self._role(resource)
        if isinstance(resource, Application):
            return self._application(resource)
        if isinstance(resource, Index):
            return self._index(resource)
        if isinstance(resource, Retriever):
            return self._retriever(resource)
        if isinstance(resource, WebExperience):
            return self._web_experience(resource)
        if isinstance(resource, DataSource):
            return self._data_source(resource)
        raise TypeError(f"No construct for {resource.logical_id} ({resource.kind})")

    # -- declarations -------------------------------------------------------

    def _key(self, resource: EncryptionKey) -> CfnResource:
        key = kms.Key(
            self,
            resource.logical_id,
            pending_window=Duration.days(resource.pending_window_days),
            removal_policy=_REMOVAL_POLICIES[resource.removal_policy],
            policy=self._document(resource.key_policy),
        )
        alias = key.add_alias(f"alias/{resource.alias}")
        _cfn(alias).override_logical_id(f"{resource.logical_id}Alias")
        self._keys[resource.logical_id] = key
        return _cfn(key)

    def _secret(self, resource: Secret) -> CfnResource:
        secret = secretsmanager.Secret(
            self,
            resource.logical_id,
            description=SECRET_DESCRIPTION,
            encryption_key=self._keys[resource.encryption_key.logical_id],
            secret_object_value={
                name: SecretValue.unsafe_plain_text(value)
                for name, value in resource.secret_object().items()
            },
        )
        return _cfn(secret)

    def _managed_policy(self, resource: ManagedPolicy) -> CfnResource:
        policy = iam.ManagedPolicy(
            self, resource.logical_id, document=self._document(resource.document)
        )
        self._managed_policies[resource.logical_id] = policy
        return _cfn(policy)

    def _role(self, resource: Role) -> CfnResource:
        trust = resource.assume_role_policy
        first = trust.statements[0]
        role = iam.Role(
            self,
            resource.logical_id,
            assumed_by=self._principal(first.principals[0], first),
            managed_policies=[
                self._managed_policies[ref.logical_id] for ref in resource.managed_policy_arns
            ],
        )
        cfn_role = _cfn(role)
        # The role's own trust statement carries no Sid; render the declared document.
        cfn_role.add_property_override(
            "AssumeRolePolicyDocument", self.resolve(self._document(trust))
        )
        return cfn_role

    def _application(self, resource: Application) -> CfnResource:
        return qbusiness.CfnApplication(
            self,
            resource.logical_id,
            display_name=resource.display_name,
            identity_center_instance_arn=resource.identity_center_instance_arn,
            role_arn=self._token(resource.role_arn),
        )

    def _index(self, resource: Index) -> CfnResource:
        return qbusiness.CfnIndex(
            self,
            resource.logical_id,
            application_id=self._token(resource.application_id),
            display_name=resource.display_name,
            type=resource.type.value,
            capacity_configuration=qbusiness.CfnIndex.IndexCapacityConfigurationProperty(
                units=resource.capacity_units,
            ),
        )

    def _retriever(self, resource: Retriever) -> CfnResource:
        return qbusiness.CfnRetriever(
            self,
            resource.logical_id,
            application_id=self._token(resource.application_id),
            display_name=resource.display_name,
            type=resource.type.value,
            configuration=qbusiness.CfnRetriever.RetrieverConfigurationProperty(
                native_index_configuration=qbusiness.CfnRetriever.NativeIndexConfigurationProperty(
                    index_id=self._token(resource.index_id),
                ),
            ),
        )

    def _web_experience(self, resource: WebExperience) -> CfnResource:
        return qbusiness.CfnWebExperience(
            self,
            resource.logical_id,
            application_id=self._token(resource.application_id),
            role_arn=self._token(resource.role_arn),
        )

    def _data_source(self, resource: DataSource) -> CfnResource:
        configuration = self._json(resource.configuration)
        configuration["repositoryConfigurations"] = {
            repo.category.value: self._json(repo)
            for repo in resource.configuration.repository_configurations
        }
        return qbusiness.CfnDataSource(
            self,
            resource.logical_id,
            application_id=self._token(resource.application_id),
            display_name=resource.display_name,
            index_id=self._token(resource.index_id),
            role_arn=self._token(resource.role_arn),
            configuration=configuration,
        )

    # -- values -------------------------------------------------------------

    def _token(self, ref: AttrRef) -> str:
        """CDK token for an identifier another declaration emits once realized."""
        element = self._elements[ref.logical_id]
        if ref.attribute == REF_ATTRIBUTE:
            token = element.ref
        else:
            token = Token.as_string(element.get_att(ref.attribute))
        return f"{token}{ref.suffix}" if ref.suffix else token

    def _json(self, model: BaseModel) -> dict[str, Any]:
        """Wire shape of a camelCase config model, references turned into tokens."""
        rendered: dict[str, Any] = {}
        for name, info in type(model).model_fields.items():
            value = getattr(model, name)
            if value is None or info.exclude:
                continue
            rendered[info.alias or name] = self._value(value)
        return rendered

    def _value(self, value: Any) -> Any:
        if isinstance(value, AttrRef):
            return self._token(value)
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, BaseModel):
            return self._json(value)
        if isinstance(value, dict):
            return {k: self._value(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._value(v) for v in value]
        return value

    def _document(self, document: PolicyDocument) -> iam.PolicyDocument:
        return iam.PolicyDocument(statements=[self._statement(s) for s in document.statements])

    def _statement(self, statement: PolicyStatement) -> iam.PolicyStatement:
        return iam.PolicyStatement(
            sid=statement.sid,
            effect=iam.Effect.ALLOW if statement.effect == "Allow" else iam.Effect.DENY,
            actions=list(statement.actions),
            resources=[self._value(r) for r in statement.resources] or None,
            principals=[self._principal(p) for p in statement.principals] or None,
            conditions=self._value(statement.condition_clauses()) or None,
        )

    def _principal(
        self, principal: Principal, scoped_by: PolicyStatement | None = None
    ) -> iam.IPrincipal:
        conditions = self._value(scoped_by.condition_clauses()) if scoped_by else None
        if principal.type == PrincipalType.SERVICE:
            return iam.ServicePrincipal(principal.identifier, conditions=conditions)
        if conditions:
            return iam.ArnPrincipal(principal.identifier).with_conditions(conditions)
        return iam.ArnPrincipal(principal.identifier)


def _cfn(construct: Construct) -> CfnResource:
    return cast(CfnResource, construct.node.default_child)


def synthesize(
    graph: ResourceGraph,
    stack_name: str = DEFAULT_STACK_NAME,
    outdir: Path | None = None,
) -> Path:
    """Synthesize *graph* as stack *stack_name* and return the template file path."""
    app = App(outdir=str(outdir) if outdir is not None else None, analytics_reporting=False)
    ResourceGraphStack(
        app,
        stack_name,
        graph=graph,
        description=f"{stack_name}: Amazon Q Business with Confluence",
    )
    artifact = app.synth().get_stack_by_name(stack_name)
    logger.debug("Synthesized %s with %d declarations", stack_name, len(graph))
    return Path(artifact.template_full_path)


def render_template(graph: ResourceGraph, stack_name: str = DEFAULT_STACK_NAME) -> dict[str, Any]:
    """Synthesize *graph* into a scratch assembly and return the template document."""
    template_file = synthesize(graph, stack_name)
    return json.loads(template_file.read_text(encoding="utf-8"))


def write_template(graph: ResourceGraph, out_path: Path, stack_name: str) -> Path:
    """Write the cloud assembly for *graph* to *out_path* and return the template path."""
    return synthesize(graph, stack_name, outdir=Path(str(out_path)))
