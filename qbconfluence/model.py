"""Canonical model — resource declarations, references, policy documents, config."""

from __future__ import annotations

from enum import StrEnum
from typing import ClassVar, TypeVar

from pydantic import BaseModel, ConfigDict, Field, SerializeAsAny
from pydantic.alias_generators import to_camel

REF_ATTRIBUTE = "Ref"

PLACEHOLDER_SECRET_VALUE = "dummy value - please change manually after deployment"


class ReferenceResolutionError(Exception):
    """Raised when a declaration references an identifier that is not emitted yet."""


class ResourceKind(StrEnum):
    KMS_KEY = "AWS::KMS::Key"
    SECRET = "AWS::SecretsManager::Secret"
    MANAGED_POLICY = "AWS::IAM::ManagedPolicy"
    ROLE = "AWS::IAM::Role"
    APPLICATION = "AWS::QBusiness::Application"
    INDEX = "AWS::QBusiness::Index"
    RETRIEVER = "AWS::QBusiness::Retriever"
    WEB_EXPERIENCE = "AWS::QBusiness::WebExperience"
    DATA_SOURCE = "AWS::QBusiness::DataSource"


class RemovalPolicy(StrEnum):
    DESTROY = "Delete"
    RETAIN = "Retain"


class IndexType(StrEnum):
    STARTER = "STARTER"
    ENTERPRISE = "ENTERPRISE"


class RetrieverType(StrEnum):
    NATIVE_INDEX = "NATIVE_INDEX"
    KENDRA_INDEX = "KENDRA_INDEX"


class SyncMode(StrEnum):
    FULL_CRAWL = "FULL_CRAWL"
    FORCED_FULL_CRAWL = "FORCED_FULL_CRAWL"
    CHANGE_LOG = "CHANGE_LOG"


class FieldType(StrEnum):
    STRING = "STRING"
    STRING_LIST = "STRING_LIST"
    DATE = "DATE"


class ContentCategory(StrEnum):
    SPACE = "space"
    PAGE = "page"


class ConditionOperator(StrEnum):
    STRING_EQUALS = "StringEquals"
    STRING_LIKE = "StringLike"
    ARN_EQUALS = "ArnEquals"
    ARN_LIKE = "ArnLike"


class PrincipalType(StrEnum):
    SERVICE = "Service"
    AWS = "AWS"


# ---------------------------------------------------------------------------
# References and deployment context
# ---------------------------------------------------------------------------


class AttrRef(BaseModel):
    """Reference to an identifier emitted by another declaration once realized."""

    model_config = ConfigDict(frozen=True)

    logical_id: str
    attribute: str
    suffix: str = ""

    def with_suffix(self, suffix: str) -> AttrRef:
        return self.model_copy(update={"suffix": suffix})


Value = str | AttrRef
ConditionValue = str | AttrRef | tuple[str, ...]


class DeploymentContext(BaseModel):
    """Account and region the graph is built for. Injected by the caller."""

    model_config = ConfigDict(frozen=True)

    account: str
    region: str
    partition: str = "aws"

    def arn(self, service: str, resource: str) -> str:
        return f"arn:{self.partition}:{service}:{self.region}:{self.account}:{resource}"


# ---------------------------------------------------------------------------
# IAM documents
# ---------------------------------------------------------------------------


class Principal(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: PrincipalType
    identifier: str


class Condition(BaseModel):
    model_config = ConfigDict(frozen=True)

    operator: ConditionOperator
    key: str
    value: ConditionValue


def condition_block(
    clauses: dict[ConditionOperator, dict[str, ConditionValue]],
) -> tuple[Condition, ...]:
    """Flatten the IAM ``{operator: {key: value}}`` shape into frozen conditions."""
    return tuple(
        Condition(operator=operator, key=key, value=value)
        for operator, block in clauses.items()
        for key, value in block.items()
    )


class PolicyStatement(BaseModel):
    model_config = ConfigDict(frozen=True)

    sid: str | None = None
    effect: str = "Allow"
    actions: tuple[str, ...]
    resources: tuple[Value, ...] = ()
    principals: tuple[Principal, ...] = ()
    conditions: tuple[Condition, ...] = ()

    def condition(self, operator: ConditionOperator, key: str) -> ConditionValue | None:
        for c in self.conditions:
            if c.operator == operator and c.key == key:
                return c.value
        return None

    def condition_clauses(self) -> dict[str, dict[str, ConditionValue]]:
        """Conditions in the IAM ``{operator: {key: value}}`` shape, as a fresh dict."""
        clauses: dict[str, dict[str, ConditionValue]] = {}
        for c in self.conditions:
            clauses.setdefault(c.operator.value, {})[c.key] = c.value
        return clauses


class PolicyDocument(BaseModel):
    model_config = ConfigDict(frozen=True)

    statements: tuple[PolicyStatement, ...]

    def sids(self) -> list[str | None]:
        return [s.sid for s in self.statements]


# ---------------------------------------------------------------------------
# Data source configuration (camelCase on the wire)
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class FieldMapping(_CamelModel):
    data_source_field_name: str
    index_field_name: str
    index_field_type: FieldType
    date_field_format: str | None = None


class RepositoryConfiguration(_CamelModel):
    category: ContentCategory = Field(exclude=True)
    field_mappings: tuple[FieldMapping, ...]


class RepositoryEndpointMetadata(_CamelModel):
    type: str = "SAAS"
    host_url: str
    auth_type: str = "Basic"


class ConnectionConfiguration(_CamelModel):
    repository_endpoint_metadata: RepositoryEndpointMetadata


class CrawlSettings(_CamelModel):
    """Confluence connector ``additionalProperties``."""

    is_crawl_acl: bool = True
    field_for_user_id: str = "uuid"
    is_crawl_personal_space: bool = False
    is_crawl_archived_space: bool = False
    is_crawl_archived_page: bool = False
    is_crawl_page: bool = True
    is_crawl_page_comment: bool = False
    is_crawl_page_attachment: bool = False
    is_crawl_blog: bool = False
    is_crawl_blog_comment: bool = False
    is_crawl_blog_attachment: bool = False
    include_supported_file_type: bool = False
    max_file_size_in_mega_bytes: str = "50"
    proxy_host: str = ""
    proxy_port: str = ""
    inclusion_space_key_filter: tuple[str, ...] = ()
    exclusion_space_key_filter: tuple[str, ...] = ()
    inclusion_url_patterns: tuple[str, ...] = ()
    exclusion_url_patterns: tuple[str, ...] = ()
    inclusion_file_type_patterns: tuple[str, ...] = ()
    exclusion_file_type_patterns: tuple[str, ...] = ()
    page_title_regex: tuple[str, ...] = Field(default=(), alias="pageTitleRegEX")
    blog_title_regex: tuple[str, ...] = Field(default=(), alias="blogTitleRegEX")
    comment_title_regex: tuple[str, ...] = Field(default=(), alias="commentTitleRegEX")
    attachment_title_regex: tuple[str, ...] = Field(default=(), alias="attachmentTitleRegEX")


class ConfluenceConfiguration(_CamelModel):
    type: str = "CONFLUENCEV2"
    secret_arn: AttrRef
    sync_mode: SyncMode = SyncMode.FORCED_FULL_CRAWL
    enable_identity_crawler: bool = True
    connection_configuration: ConnectionConfiguration
    repository_configurations: tuple[RepositoryConfiguration, ...]
    additional_properties: CrawlSettings = Field(default_factory=CrawlSettings)

    def field_mapping_table(self) -> dict[ContentCategory, tuple[FieldMapping, ...]]:
        return {r.category: r.field_mappings for r in self.repository_configurations}


# ---------------------------------------------------------------------------
# Resource declarations
# ---------------------------------------------------------------------------


class Resource(BaseModel):
    """A declaration that an external engine turns into a cloud resource."""

    model_config = ConfigDict(frozen=True)

    kind: ClassVar[ResourceKind]
    emits: ClassVar[frozenset[str]]

    logical_id: str

    def ref(self, attribute: str = REF_ATTRIBUTE) -> AttrRef:
        if attribute not in self.emits:
            raise ReferenceResolutionError(
                f"{self.logical_id} ({self.kind}) does not emit '{attribute}'"
            )
        return AttrRef(logical_id=self.logical_id, attribute=attribute)

    def references(self) -> list[AttrRef]:
        """All attribute references held anywhere in this declaration."""
        refs: list[AttrRef] = []
        for name in type(self).model_fields:
            _collect_refs(getattr(self, name), refs)
        return refs

    def depends_on(self) -> list[str]:
        seen: list[str] = []
        for ref in self.references():
            if ref.logical_id not in seen:
                seen.append(ref.logical_id)
        return seen


def _collect_refs(value: object, out: list[AttrRef]) -> None:
    if isinstance(value, AttrRef):
        out.append(value)
    elif isinstance(value, BaseModel):
        for name in type(value).model_fields:
            _collect_refs(getattr(value, name), out)
    elif isinstance(value, (list, tuple)):
        for item in value:
            _collect_refs(item, out)


class EncryptionKey(Resource):
    kind: ClassVar[ResourceKind] = ResourceKind.KMS_KEY
    emits: ClassVar[frozenset[str]] = frozenset({"Arn", "KeyId"})

    alias: str
    pending_window_days: int = Field(default=7, ge=7, le=30)
    removal_policy: RemovalPolicy = RemovalPolicy.DESTROY
    key_policy: PolicyDocument


class Secret(Resource):
    """Connector credentials. Every field is a placeholder until replaced by hand."""

    kind: ClassVar[ResourceKind] = ResourceKind.SECRET
    emits: ClassVar[frozenset[str]] = frozenset({REF_ATTRIBUTE})

    username: str = PLACEHOLDER_SECRET_VALUE
    host_url: str = PLACEHOLDER_SECRET_VALUE
    password: str = PLACEHOLDER_SECRET_VALUE
    encryption_key: AttrRef
    requires_manual_replacement: bool = True

    def secret_object(self) -> dict[str, str]:
        return {"username": self.username, "hostUrl": self.host_url, "password": self.password}


class ManagedPolicy(Resource):
    kind: ClassVar[ResourceKind] = ResourceKind.MANAGED_POLICY
    emits: ClassVar[frozenset[str]] = frozenset({REF_ATTRIBUTE})

    document: PolicyDocument


class Role(Resource):
    kind: ClassVar[ResourceKind] = ResourceKind.ROLE
    emits: ClassVar[frozenset[str]] = frozenset({"Arn", "RoleId"})

    assume_role_policy: PolicyDocument
    managed_policy_arns: tuple[AttrRef, ...] = ()


class Application(Resource):
    kind: ClassVar[ResourceKind] = ResourceKind.APPLICATION
    emits: ClassVar[frozenset[str]] = frozenset({"ApplicationId", "ApplicationArn"})

    display_name: str
    identity_center_instance_arn: str
    role_arn: AttrRef


class Index(Resource):
    kind: ClassVar[ResourceKind] = ResourceKind.INDEX
    emits: ClassVar[frozenset[str]] = frozenset({"IndexId", "IndexArn"})

    display_name: str = "Index"
    type: IndexType = IndexType.STARTER
    capacity_units: int = Field(default=1, ge=1)
    application_id: AttrRef


class Retriever(Resource):
    kind: ClassVar[ResourceKind] = ResourceKind.RETRIEVER
    emits: ClassVar[frozenset[str]] = frozenset({"RetrieverId", "RetrieverArn"})

    display_name: str = "Retriever"
    type: RetrieverType = RetrieverType.NATIVE_INDEX
    application_id: AttrRef
    index_id: AttrRef


class WebExperience(Resource):
    kind: ClassVar[ResourceKind] = ResourceKind.WEB_EXPERIENCE
    emits: ClassVar[frozenset[str]] = frozenset(
        {"WebExperienceId", "WebExperienceArn", "DefaultEndpoint"}
    )

    application_id: AttrRef
    role_arn: AttrRef


class DataSource(Resource):
    kind: ClassVar[ResourceKind] = ResourceKind.DATA_SOURCE
    emits: ClassVar[frozenset[str]] = frozenset({"DataSourceId", "DataSourceArn"})

    display_name: str
    application_id: AttrRef
    index_id: AttrRef
    role_arn: AttrRef
    configuration: ConfluenceConfiguration


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------


R = TypeVar("R", bound=Resource)


class Edge(BaseModel):
    """``from_id`` must be realized before ``to_id``."""

    model_config = ConfigDict(frozen=True)

    from_id: str
    to_id: str
    attribute: str


class ResourceGraph(BaseModel):
    """Ordered, fully linked declaration set. Declaration order is creation order."""

    model_config = ConfigDict(frozen=True)

    context: DeploymentContext
    resources: tuple[SerializeAsAny[Resource], ...]

    def __len__(self) -> int:
        return len(self.resources)

    def logical_ids(self) -> list[str]:
        return [r.logical_id for r in self.resources]

    def get(self, logical_id: str) -> Resource:
        for resource in self.resources:
            if resource.logical_id == logical_id:
                return resource
        raise KeyError(logical_id)

    def of_type(self, cls: type[R]) -> list[R]:
        return [r for r in self.resources if isinstance(r, cls)]

    def edges(self) -> list[Edge]:
        edges: list[Edge] = []
        for resource in self.resources:
            for ref in resource.references():
                edge = Edge(
                    from_id=ref.logical_id, to_id=resource.logical_id, attribute=ref.attribute
                )
                if edge not in edges:
                    edges.append(edge)
        return edges


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class GraphSettings(BaseModel):
    application_display_name: str = "CDK_QBusiness"
    key_alias: str = "QBusinessKey"
    key_pending_window_days: int = Field(default=7, ge=7, le=30)
    key_removal_policy: RemovalPolicy = RemovalPolicy.DESTROY
    index_type: IndexType = IndexType.STARTER
    index_capacity_units: int = Field(default=1, ge=1)
    data_source_display_name: str = "ConfluenceDataSource"
    sync_mode: SyncMode = SyncMode.FORCED_FULL_CRAWL
    document_bucket: str = "bucket"


class StackConfig(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    identity_center_instance_arn: str | None = None
    confluence_host_url: str | None = None
    account: str | None = None
    region: str | None = None
    partition: str = "aws"
    stack_name: str = "QBusinessConfluenceStack"
    settings: GraphSettings = Field(default_factory=GraphSettings)
