"""IAM policy assembly — permission and trust documents for each role."""

from __future__ import annotations

from qbconfluence.model import (
    AttrRef,
    ConditionOperator,
    DeploymentContext,
    PolicyDocument,
    PolicyStatement,
    Principal,
    PrincipalType,
    condition_block,
)

QBUSINESS_SERVICE = "qbusiness.amazonaws.com"
QBUSINESS_APPLICATION_SERVICE = "application.qbusiness.amazonaws.com"

SOURCE_ACCOUNT_KEY = "aws:SourceAccount"
SOURCE_ARN_KEY = "aws:SourceArn"

_WEB_EXPERIENCE_CONVERSATION_ACTIONS = (
    "qbusiness:Chat",
    "qbusiness:ChatSync",
    "qbusiness:ListMessages",
    "qbusiness:ListConversations",
    "qbusiness:DeleteConversation",
    "qbusiness:PutFeedback",
    "qbusiness:GetWebExperience",
    "qbusiness:GetApplication",
    "qbusiness:ListPlugins",
    "qbusiness:GetChatControlsConfiguration",
)

_WEB_EXPERIENCE_QAPPS_ACTIONS = (
    "qapps:CreateQApp",
    "qapps:PredictProblemStatementFromConversation",
    "qapps:PredictQAppFromProblemStatement",
    "qapps:CopyQApp",
    "qapps:GetQApp",
    "qapps:ListQApps",
    "qapps:UpdateQApp",
    "qapps:DeleteQApp",
    "qapps:AssociateQAppWithUser",
    "qapps:DisassociateQAppFromUser",
    "qapps:ImportDocumentToQApp",
    "qapps:ImportDocumentToQAppSession",
    "qapps:CreateLibraryItem",
    "qapps:GetLibraryItem",
    "qapps:UpdateLibraryItem",
    "qapps:CreateLibraryItemReview",
    "qapps:ListLibraryItems",
    "qapps:CreateSubscriptionToken",
    "qapps:StartQAppSession",
    "qapps:StopQAppSession",
)


def key_policy(ctx: DeploymentContext) -> PolicyDocument:
    """Default KMS key policy: the owning account administers the key through IAM."""
    return PolicyDocument(
        statements=(
            PolicyStatement(
                sid="EnableAccountRootPermissions",
                actions=("kms:*",),
                resources=("*",),
                principals=(
                    Principal(
                        type=PrincipalType.AWS,
                        identifier=f"arn:{ctx.partition}:iam::{ctx.account}:root",
                    ),
                ),
            ),
        )
    )


def application_policy(ctx: DeploymentContext) -> PolicyDocument:
    log_group = ctx.arn("logs", "log-group:/aws/qbusiness/*")
    return PolicyDocument(
        statements=(
            PolicyStatement(
                sid="AmazonQApplicationPutMetricDataPermission",
                actions=("cloudwatch:PutMetricData",),
                resources=("*",),
                conditions=condition_block(
                    {ConditionOperator.STRING_EQUALS: {"cloudwatch:namespace": "AWS/QBusiness"}}
                ),
            ),
            PolicyStatement(
                sid="AmazonQApplicationDescribeLogGroupsPermission",
                actions=("logs:DescribeLogGroups",),
                resources=("*",),
            ),
            PolicyStatement(
                sid="AmazonQApplicationCreateLogGroupPermission",
                actions=("logs:CreateLogGroup",),
                resources=(log_group,),
            ),
            PolicyStatement(
                sid="AmazonQApplicationLogStreamPermission",
                actions=(
                    "logs:DescribeLogStreams",
                    "logs:CreateLogStream",
                    "logs:PutLogEvents",
                ),
                resources=(f"{log_group}:log-stream:*",),
            ),
        )
    )


def application_trust(ctx: DeploymentContext) -> PolicyDocument:
    """Trust for the application role. The application ARN is not known yet, so any
    application in this account and region may assume it."""
    return PolicyDocument(
        statements=(
            _service_trust(
                "QBusinessApplicationTrustPolicy",
                QBUSINESS_SERVICE,
                ctx,
                ConditionOperator.ARN_LIKE,
                ctx.arn("qbusiness", "application/*"),
            ),
        )
    )


def web_experience_policy(application_arn: AttrRef) -> PolicyDocument:
    return PolicyDocument(
        statements=(
            PolicyStatement(
                sid="QBusinessConversationPermission",
                actions=_WEB_EXPERIENCE_CONVERSATION_ACTIONS,
                resources=(application_arn,),
            ),
            PolicyStatement(
                sid="QBusinessQAppsPermissions",
                actions=_WEB_EXPERIENCE_QAPPS_ACTIONS,
                resources=(application_arn,),
            ),
        )
    )


def web_experience_trust(ctx: DeploymentContext, application_arn: AttrRef) -> PolicyDocument:
    """The web experience both assumes the role and sets the session context."""
    return PolicyDocument(
        statements=(
            _service_trust(
                "QBusinessTrustPolicy",
                QBUSINESS_APPLICATION_SERVICE,
                ctx,
                ConditionOperator.ARN_EQUALS,
                application_arn,
            ),
            _service_trust(
                "QBusinessSetContextPermission",
                QBUSINESS_APPLICATION_SERVICE,
                ctx,
                ConditionOperator.ARN_EQUALS,
                application_arn,
                actions=("sts:SetContext",),
            ),
        )
    )


def data_source_policy(
    ctx: DeploymentContext,
    *,
    secret_arn: AttrRef,
    key_arn: AttrRef,
    index_arn: AttrRef,
    application_arn: AttrRef,
    bucket: str = "bucket",
) -> PolicyDocument:
    return PolicyDocument(
        statements=(
            PolicyStatement(
                sid="AllowsAmazonQToGetS3Objects",
                actions=("s3:GetObject",),
                resources=(f"arn:{ctx.partition}:s3:::{bucket}/*",),
                conditions=condition_block(
                    {ConditionOperator.STRING_EQUALS: {"aws:ResourceAccount": ctx.account}}
                ),
            ),
            PolicyStatement(
                sid="AllowsAmazonQToGetSecret",
                actions=("secretsmanager:GetSecretValue",),
                resources=(secret_arn,),
            ),
            PolicyStatement(
                sid="AllowsAmazonQToDecryptSecret",
                actions=("kms:Decrypt",),
                resources=(key_arn,),
                conditions=condition_block(
                    {
                        ConditionOperator.STRING_LIKE: {
                            "kms:ViaService": ("secretsmanager.*.amazonaws.com",),
                        },
                    }
                ),
            ),
            PolicyStatement(
                sid="AllowsAmazonQToIngestDocuments",
                actions=("qbusiness:BatchPutDocument", "qbusiness:BatchDeleteDocument"),
                resources=(index_arn,),
            ),
            PolicyStatement(
                sid="AllowsAmazonQToIngestPrincipalMapping",
                actions=(
                    "qbusiness:PutGroup",
                    "qbusiness:CreateUser",
                    "qbusiness:DeleteGroup",
                    "qbusiness:UpdateUser",
                    "qbusiness:ListGroups",
                ),
                resources=(
                    application_arn,
                    index_arn,
                    index_arn.with_suffix("/data-source/*"),
                ),
            ),
        )
    )


def data_source_trust(ctx: DeploymentContext, application_arn: AttrRef) -> PolicyDocument:
    return PolicyDocument(
        statements=(
            _service_trust(
                "AllowsAmazonQServicePrincipal",
                QBUSINESS_SERVICE,
                ctx,
                ConditionOperator.ARN_EQUALS,
                application_arn,
            ),
        )
    )


def _service_trust(
    sid: str,
    service: str,
    ctx: DeploymentContext,
    source_arn_operator: ConditionOperator,
    source_arn: str | AttrRef,
    actions: tuple[str, ...] = ("sts:AssumeRole",),
) -> PolicyStatement:
    return PolicyStatement(
        sid=sid,
        actions=actions,
        principals=(Principal(type=PrincipalType.SERVICE, identifier=service),),
        conditions=condition_block(
            {
                ConditionOperator.STRING_EQUALS: {SOURCE_ACCOUNT_KEY: ctx.account},
                source_arn_operator: {SOURCE_ARN_KEY: source_arn},
            }
        ),
    )
