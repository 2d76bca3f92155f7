"""Shared test fixtures."""

from pathlib import Path

import pytest

from qbconfluence.builder import build_resource_graph
from qbconfluence.model import DeploymentContext, ResourceGraph

FIXTURES_DIR = Path(__file__).parent / "fixtures"

IDENTITY_CENTER_ARN = "R1"
HOST_URL = "https://example.atlassian.net/"


@pytest.fixture()
def fixtures_dir() -> Path:
    return FIXTURES_DIR


@pytest.fixture()
def context() -> DeploymentContext:
    return DeploymentContext(account="123456789012", region="us-east-1")


@pytest.fixture()
def graph(context: DeploymentContext) -> ResourceGraph:
    return build_resource_graph(IDENTITY_CENTER_ARN, HOST_URL, context)
