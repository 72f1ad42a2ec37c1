"""Stage handlers: the work behind each pipeline stage.

``AppBuilder`` implements the ``StageHandler`` protocol the ``StageEngine``
drives.  What differs between web and mobile apps (framework, libraries,
prompt wording) comes from the ``TechStack`` it is composed with.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol, Union

from appbuilder.builder.generation import GenerationPipeline
from appbuilder.builder.prompts import ProjectContext, PromptRenderer
from appbuilder.builder.stacks import TechStack, default_stack
from appbuilder.config import BuildConfig
from appbuilder.gateway import CancelToken, ConversationMessage
from appbuilder.parser.models import AppPlan, GeneratedArtifact, GenerationReport
from appbuilder.parser.validated_call import ValidatedCallProtocol
from appbuilder.utils import (
    NullProgressSink,
    ProgressSink,
    parse_version,
    print_warning,
    run_command,
    sanitize_name,
    to_mermaid_markdown,
)

StageResult = Union[AppPlan, GenerationReport]


class InvalidBuildRequest(Exception):
    """The user's request cannot start a build (e.g. it is empty)."""


@dataclass
class StageInput:
    """What a stage receives from the one before it."""

    user_message: str
    previous_messages: list[ConversationMessage] = field(default_factory=list)
    previous_output: Optional[StageResult] = None


@dataclass
class StageOutput:
    """What a stage hands to the next one."""

    messages: list[ConversationMessage]
    output: Optional[StageResult] = None


class StageHandler(Protocol):
    """Operations the ``StageEngine`` dispatches to."""

    precheck_error: str | None

    @property
    def app_type(self) -> str: ...

    @property
    def tech_stack(self) -> TechStack: ...

    async def precheck(self) -> bool: ...

    async def initialize(self, user_message: str) -> StageOutput: ...

    async def generate_code(self, stage_input: StageInput) -> StageOutput: ...


class AppBuilder:
    """Plans and generates an app for one ``TechStack``.

    Args:
        protocol: Validated call protocol shared by every stage.
        tech_stack: Target stack strategy.
        sink: Progress notifications.
        build: Build settings (node check, failure policy).
        renderer: Prompt renderer; a default one is created when omitted.
        predefined_dependencies: Files shown to the model with every
            component request.
        cancel_token: Forwarded to every model call.
    """

    def __init__(
        self,
        protocol: ValidatedCallProtocol,
        tech_stack: TechStack,
        sink: ProgressSink | None = None,
        build: BuildConfig | None = None,
        renderer: PromptRenderer | None = None,
        predefined_dependencies: list[GeneratedArtifact] | None = None,
        cancel_token: CancelToken | None = None,
    ) -> None:
        self.protocol = protocol
        self._tech_stack = tech_stack
        self.sink = sink or NullProgressSink()
        self.build = build or BuildConfig()
        self.renderer = renderer or PromptRenderer()
        self.predefined_dependencies = list(predefined_dependencies or [])
        self.cancel_token = cancel_token
        self.precheck_error: str | None = None

    @property
    def app_type(self) -> str:
        return self._tech_stack.app_type

    @property
    def tech_stack(self) -> TechStack:
        return self._tech_stack

    # ------------------------------------------------------------------
    # Pre-check
    # ------------------------------------------------------------------

    async def precheck(self) -> bool:
        """Verify the local toolchain the generated project needs.

        Returns ``False`` (with ``precheck_error`` set) when Node.js is
        required but missing or older than ``build.min_node_version``.
        """
        self.precheck_error = None
        if not self.build.require_node:
            return True

        self.sink.progress("Checking for Node.js")
        code, stdout, stderr = await run_command(["node", "--version"], timeout=30)
        if code != 0:
            self.precheck_error = (
                "Node.js is not installed. Install Node.js "
                f"{self.build.min_node_version} or later and try again."
            )
            self.sink.progress(self.precheck_error)
            return False

        found = parse_version(stdout)
        required = parse_version(self.build.min_node_version)
        if found < required:
            self.precheck_error = (
                f"Node.js {stdout} is too old; {self.build.min_node_version} or later is required."
            )
            self.sink.progress(self.precheck_error)
            return False

        self.sink.progress(f"Found Node.js {stdout}")
        return True

    # ------------------------------------------------------------------
    # Initialize
    # ------------------------------------------------------------------

    async def initialize(self, user_message: str) -> StageOutput:
        """Ask the model to plan the app described by *user_message*.

        Raises:
            InvalidBuildRequest: *user_message* is empty.
            ValidationExhausted: The model never produced a valid plan.
        """
        if not user_message or not user_message.strip():
            raise InvalidBuildRequest("Describe the app you want to build.")

        self.sink.progress("Designing the app")
        messages = [
            ConversationMessage.system(self.renderer.initialize_instructions(self._tech_stack)),
            ConversationMessage.user(f"Create app for: {user_message.strip()}"),
        ]
        result = await self.protocol.call(
            [*messages, ConversationMessage.user(self.renderer.response_format(AppPlan))],
            AppPlan,
            cancel_token=self.cancel_token,
        )

        plan = result.value
        if plan.error:
            print_warning(f"Model reported a problem with the plan: {plan.error}")

        plan = plan.model_copy(
            update={
                "name": sanitize_name(plan.name) or "app",
                "design": to_mermaid_markdown(plan.design) if plan.design else "",
            }
        )

        self.sink.markdown(f"# {plan.title or plan.name}")
        if plan.features:
            self.sink.markdown("\n".join(f"- {feature}" for feature in plan.features))
        if plan.design:
            self.sink.markdown(plan.design)
        self.sink.progress(f"Planned {len(plan.components)} components")

        return StageOutput(
            messages=[*messages, ConversationMessage.assistant(result.raw_text)],
            output=plan,
        )

    # ------------------------------------------------------------------
    # Generate code
    # ------------------------------------------------------------------

    async def generate_code(self, stage_input: StageInput) -> StageOutput:
        """Generate every planned component.

        Failed components are reported, not raised; see ``GenerationPipeline``.
        """
        plan = stage_input.previous_output
        if not isinstance(plan, AppPlan):
            raise TypeError("generate_code requires an AppPlan from the Initialize stage")

        context = ProjectContext(
            app_name=plan.name,
            architecture=plan.architecture,
            design=plan.design,
            stack_prompt=self._tech_stack.describe(),
            features=plan.features,
        )
        pipeline = GenerationPipeline(
            self.protocol,
            renderer=self.renderer,
            sink=self.sink,
            abort_on_failure=self.build.abort_on_component_failure,
            predefined_dependencies=self.predefined_dependencies,
        )
        messages, report = await pipeline.run(
            plan, stage_input.previous_messages, context, cancel_token=self.cancel_token
        )

        self.sink.progress(
            f"Generated {len(report.succeeded)} of {len(report.components)} components"
        )
        if report.failed:
            self.sink.progress(f"Failed components: {', '.join(report.failed)}")
        libraries = sorted(set(self._tech_stack.base_libraries()) | set(report.libraries))
        if libraries:
            self.sink.progress(f"Libraries to install: {', '.join(libraries)}")

        return StageOutput(messages=messages, output=report)


def create_app_builder(
    app_type: str,
    protocol: ValidatedCallProtocol,
    sink: ProgressSink | None = None,
    build: BuildConfig | None = None,
    tech_stack: TechStack | None = None,
    predefined_dependencies: list[GeneratedArtifact] | None = None,
    cancel_token: CancelToken | None = None,
) -> AppBuilder:
    """Build an ``AppBuilder`` for ``"web"`` or ``"mobile"``.

    Raises:
        ValueError: Unknown *app_type*, or *tech_stack* targets another type.
    """
    stack = tech_stack or default_stack(app_type)
    if stack.app_type != app_type:
        raise ValueError(f"Tech stack is for {stack.app_type} apps, not {app_type}")
    return AppBuilder(
        protocol,
        stack,
        sink=sink,
        build=build,
        predefined_dependencies=predefined_dependencies,
        cancel_token=cancel_token,
    )
