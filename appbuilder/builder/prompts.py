"""Jinja2 rendering of the prompts sent to the model.

Prompt text lives in ``appbuilder/builder/templates/*.j2``; this module
only gathers the context each template needs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined
from pydantic import BaseModel

from appbuilder.builder.stacks import TechStack
from appbuilder.parser.models import ComponentSpec, GeneratedArtifact
from appbuilder.parser.validator import SchemaValidator

_DEFAULT_TEMPLATE_DIR = Path(__file__).parent / "templates"


@dataclass
class ProjectContext:
    """App-wide facts repeated in every component request."""

    app_name: str
    architecture: str = ""
    design: str = ""
    stack_prompt: str = ""
    features: list[str] = field(default_factory=list)


class PromptRenderer:
    """Renders the initialize, kickoff, component and response-format prompts."""

    def __init__(self, template_dir: str | Path | None = None) -> None:
        if template_dir is None:
            template_dir = _DEFAULT_TEMPLATE_DIR
        self.template_dir = Path(template_dir)
        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def render(self, template_path: str, context: dict[str, Any]) -> str:
        template = self.env.get_template(template_path)
        return template.render(**context).strip()

    # -- Stage prompts -----------------------------------------------------

    def initialize_instructions(self, stack: TechStack) -> str:
        """System instructions for planning an app on *stack*."""
        framework = getattr(stack.framework, "value", stack.framework)
        return self.render(
            "initialize.j2",
            {"app_type": stack.app_type, "framework": framework, "stack": stack.describe()},
        )

    def kickoff(self) -> str:
        """The user turn that opens the code generation conversation."""
        return self.render("kickoff.j2", {})

    def component_request(
        self,
        component: ComponentSpec,
        dependencies: list[GeneratedArtifact],
        external: list[str],
        context: ProjectContext,
    ) -> str:
        """Request code for *component*.

        Args:
            component: The component to generate.
            dependencies: Artifacts whose source is shown to the model, in order.
            external: Dependency names that are not planned components.
            context: App-wide architecture, design and stack text.
        """
        return self.render(
            "component.j2",
            {
                "component": component,
                "dependencies": dependencies,
                "external": external,
                "context": context,
            },
        )

    def response_format(self, schema: type[BaseModel]) -> str:
        """Instruction asking for JSON matching *schema*."""
        return self.render(
            "response_format.j2", {"schema": SchemaValidator(schema).schema_prompt()}
        )
