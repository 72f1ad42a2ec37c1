"""Shared pytest fixtures for the appbuilder test suite.

Provides reusable fixtures for:
- Scripted model gateways that replay canned replies
- Sample app plans and component-code replies
- Mock subprocess helpers
- Configurations rooted in a temporary directory
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from appbuilder.config import BuildConfig, Config
from appbuilder.gateway import ConversationMessage
from appbuilder.parser.models import AppPlan


# ---------------------------------------------------------------------------
# Scripted gateway
# ---------------------------------------------------------------------------

class ScriptedGateway:
    """A ``ModelGateway`` double that replays replies in order.

    Each reply is either a string or a callable taking the message list and
    returning a string.  Every call's messages are recorded in ``calls``.
    """

    def __init__(self, replies: list[str | Callable[[list[ConversationMessage]], str]]):
        self.replies = list(replies)
        self.calls: list[list[ConversationMessage]] = []

    async def send(self, messages, cancel_token=None) -> str:
        self.calls.append(list(messages))
        if not self.replies:
            raise AssertionError("ScriptedGateway ran out of replies")
        reply = self.replies.pop(0)
        return reply(messages) if callable(reply) else reply


@pytest.fixture
def scripted_gateway() -> Callable[..., ScriptedGateway]:
    """Factory for ``ScriptedGateway`` instances.

    Usage:
        def test_call(scripted_gateway):
            gateway = scripted_gateway('{"a": 1}')
    """
    def factory(*replies: Any) -> ScriptedGateway:
        return ScriptedGateway(list(replies))

    return factory


# ---------------------------------------------------------------------------
# Sample plan & replies
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_plan_dict() -> dict[str, Any]:
    """An Initialize-stage reply as the model would send it (wire names)."""
    return {
        "name": "Recipe Keeper",
        "title": "Recipe Keeper",
        "features": ["Add recipes", "Tag recipes", "Search by ingredient"],
        "design": "graph TD; Home-->RecipeList; RecipeList-->RecipeDetail",
        "components": [
            {
                "name": "HomePage",
                "type": "screen",
                "purpose": "Entry page listing recipes",
                "path": "src/app/page.tsx",
                "dependsOn": ["RecipeList", "react"],
            },
            {
                "name": "RecipeList",
                "type": "ui_component",
                "purpose": "Renders the recipe list",
                "path": "src/components/RecipeList.tsx",
                "dependsOn": ["recipeStore"],
            },
            {
                "name": "recipeStore",
                "type": "service",
                "purpose": "Zustand store holding recipes",
                "path": "src/store/recipeStore.ts",
                "dependsOn": ["zustand"],
            },
        ],
        "summary": "A simple recipe manager",
    }


@pytest.fixture
def sample_plan(sample_plan_dict: dict[str, Any]) -> AppPlan:
    """``sample_plan_dict`` validated into an ``AppPlan``."""
    return AppPlan.model_validate(sample_plan_dict)


def make_component_reply(name: str, path: str, libraries: list[str] | None = None) -> str:
    """A GenerateCode-stage reply wrapped in a markdown fence."""
    body = {
        "componentName": name,
        "filePath": path,
        "content": f"export const {name} = () => null;\n",
        "libraries": libraries or [],
    }
    return "Here is the code:\n```json\n" + json.dumps(body) + "\n```\n"


@pytest.fixture
def component_reply() -> Callable[..., str]:
    """Factory for GenerateCode-stage replies, see ``make_component_reply``."""
    return make_component_reply


# ---------------------------------------------------------------------------
# Mock Subprocess (generic)
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_subprocess():
    """Mock asyncio subprocess for testing command execution.

    Returns a factory that creates mock subprocess instances with configurable
    stdout, stderr, and return codes.

    Usage:
        def test_command(mock_subprocess):
            proc = mock_subprocess(stdout="v18.17.0", returncode=0)
            with patch("asyncio.create_subprocess_exec", return_value=proc):
                ...
    """
    def factory(
        stdout: str = "",
        stderr: str = "",
        returncode: int = 0,
    ) -> AsyncMock:
        mock_proc = AsyncMock()
        mock_proc.communicate = AsyncMock(
            return_value=(stdout.encode("utf-8"), stderr.encode("utf-8"))
        )
        mock_proc.returncode = returncode
        mock_proc.pid = 99999
        mock_proc.kill = MagicMock()
        mock_proc.wait = AsyncMock(return_value=returncode)
        return mock_proc

    return factory


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@pytest.fixture
def tmp_config(tmp_path: Path) -> Config:
    """A configuration writing under ``tmp_path`` with the node check off."""
    return Config(
        project_name="test-app",
        output_dir=tmp_path / "output",
        build=BuildConfig(require_node=False),
    )
