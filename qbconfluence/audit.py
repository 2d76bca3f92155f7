"""Graph audit — invariant rules run over every assembled graph."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel

from qbconfluence.field_mappings import validate_field_mappings
from qbconfluence.model import (
    ConditionOperator,
    DataSource,
    EncryptionKey,
    ManagedPolicy,
    PolicyDocument,
    Resource,
    Role,
)
from qbconfluence.policies import SOURCE_ACCOUNT_KEY, SOURCE_ARN_KEY

if TYPE_CHECKING:
    from qbconfluence.model import ResourceGraph

_RESOURCE_SCOPING_OPERATORS = (ConditionOperator.ARN_EQUALS, ConditionOperator.ARN_LIKE)


class Violation(BaseModel):
    rule_id: str
    logical_id: str
    message: str


class GraphInvariantError(Exception):
    """Raised when an assembled graph breaks one of the audit rules."""

    def __init__(self, violations: list[Violation]) -> None:
        self.violations = violations
        details = "; ".join(f"[{v.rule_id}] {v.logical_id}: {v.message}" for v in violations)
        super().__init__(f"{len(violations)} graph invariant violation(s): {details}")


def audit_graph(graph: ResourceGraph) -> list[Violation]:
    """Run all rules against every declaration and return the violations found."""
    violations: list[Violation] = []
    for resource in graph.resources:
        for rule in _RULES:
            violations.extend(rule(resource))
    return violations


def policy_documents(resource: Resource) -> list[PolicyDocument]:
    if isinstance(resource, ManagedPolicy):
        return [resource.document]
    if isinstance(resource, Role):
        return [resource.assume_role_policy]
    if isinstance(resource, EncryptionKey):
        return [resource.key_policy]
    return []


def _rule_missing_sid(resource: Resource) -> list[Violation]:
    violations: list[Violation] = []
    for document in policy_documents(resource):
        for i, sid in enumerate(document.sids()):
            if not sid:
                violations.append(
                    Violation(
                        rule_id="missing-sid",
                        logical_id=resource.logical_id,
                        message=f"Statement {i} has no Sid",
                    )
                )
    return violations


def _rule_duplicate_sid(resource: Resource) -> list[Violation]:
    violations: list[Violation] = []
    for document in policy_documents(resource):
        seen: set[str] = set()
        for sid in document.sids():
            if not sid:
                continue
            if sid in seen:
                violations.append(
                    Violation(
                        rule_id="duplicate-sid",
                        logical_id=resource.logical_id,
                        message=f"Sid '{sid}' is used by more than one statement",
                    )
                )
            seen.add(sid)
    return violations


def _rule_unscoped_trust(resource: Resource) -> list[Violation]:
    if not isinstance(resource, Role):
        return []
    violations: list[Violation] = []
    for statement in resource.assume_role_policy.statements:
        label = statement.sid or "<unnamed>"
        if not statement.condition(ConditionOperator.STRING_EQUALS, SOURCE_ACCOUNT_KEY):
            violations.append(
                Violation(
                    rule_id="trust-without-account",
                    logical_id=resource.logical_id,
                    message=f"Trust statement {label} is not scoped to a source account",
                )
            )
        if not any(
            statement.condition(op, SOURCE_ARN_KEY) for op in _RESOURCE_SCOPING_OPERATORS
        ):
            violations.append(
                Violation(
                    rule_id="trust-without-source-arn",
                    logical_id=resource.logical_id,
                    message=f"Trust statement {label} is not scoped to a source ARN",
                )
            )
    return violations


def _rule_wildcard_action(resource: Resource) -> list[Violation]:
    if not isinstance(resource, ManagedPolicy):
        return []
    return [
        Violation(
            rule_id="wildcard-action",
            logical_id=resource.logical_id,
            message=f"Statement {statement.sid} grants Action: *",
        )
        for statement in resource.document.statements
        if any(action == "*" or action.endswith(":*") for action in statement.actions)
    ]


def _rule_field_mappings(resource: Resource) -> list[Violation]:
    if not isinstance(resource, DataSource):
        return []
    table = resource.configuration.field_mapping_table()
    return [
        Violation(rule_id="field-mapping", logical_id=resource.logical_id, message=problem)
        for problem in validate_field_mappings(table)
    ]


_RULES = [
    _rule_missing_sid,
    _rule_duplicate_sid,
    _rule_unscoped_trust,
    _rule_wildcard_action,
    _rule_field_mappings,
]
