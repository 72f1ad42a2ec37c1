"""Per-component code generation.

Walks the plan's components in dependency order and asks the model for
each one's source, feeding it the already generated code of the
component's internal dependencies.  One component failing validation does
not stop the rest; components that depend on it are marked failed without
a model call.
"""

from __future__ import annotations

from appbuilder.builder.prompts import ProjectContext, PromptRenderer
from appbuilder.builder.resolver import (
    DependencyResolver,
    external_dependencies,
    internal_dependencies,
)
from appbuilder.gateway import CancelToken, ConversationMessage
from appbuilder.parser.models import (
    AppPlan,
    ComponentCode,
    ComponentFailure,
    GeneratedArtifact,
    GenerationReport,
)
from appbuilder.parser.validated_call import ValidatedCallProtocol, ValidationExhausted
from appbuilder.utils import NullProgressSink, ProgressSink, print_warning


class GenerationPipeline:
    """Generates source for every planned component, one at a time.

    Args:
        protocol: Validated call protocol used for each component.
        renderer: Prompt renderer; a default one is created when omitted.
        sink: Progress notifications.
        resolver: Orders the components; defaults to ``DependencyResolver()``.
        abort_on_failure: Re-raise the first ``ValidationExhausted`` instead of
            recording it and moving on.
        predefined_dependencies: Files that exist before generation starts
            (e.g. generated database types) and are shown with every request.
    """

    def __init__(
        self,
        protocol: ValidatedCallProtocol,
        renderer: PromptRenderer | None = None,
        sink: ProgressSink | None = None,
        resolver: DependencyResolver | None = None,
        abort_on_failure: bool = False,
        predefined_dependencies: list[GeneratedArtifact] | None = None,
    ) -> None:
        self.protocol = protocol
        self.renderer = renderer or PromptRenderer()
        self.sink = sink or NullProgressSink()
        self.resolver = resolver or DependencyResolver()
        self.abort_on_failure = abort_on_failure
        self.predefined_dependencies = list(predefined_dependencies or [])

    async def run(
        self,
        plan: AppPlan,
        previous_messages: list[ConversationMessage],
        context: ProjectContext,
        cancel_token: CancelToken | None = None,
    ) -> tuple[list[ConversationMessage], GenerationReport]:
        """Generate every component of *plan*.

        Args:
            plan: Output of the Initialize stage.
            previous_messages: Conversation so far; copied, never mutated.
            context: App-wide text included in each request.
            cancel_token: Forwarded to the gateway.

        Returns:
            The conversation carried forward and a ``GenerationReport``.

        Raises:
            CyclicDependency: The plan's components cannot be ordered.
            ValidationExhausted: Only when ``abort_on_failure`` is set.
        """
        ordered = self.resolver.resolve(plan.components)
        known = {c.name for c in ordered}
        conversation = [*previous_messages, ConversationMessage.user(self.renderer.kickoff())]
        format_prompt = self.renderer.response_format(ComponentCode)

        artifacts: dict[str, GeneratedArtifact] = {}
        failures: list[ComponentFailure] = []
        total = len(ordered)

        for index, spec in enumerate(ordered, start=1):
            internal = internal_dependencies(spec, known)
            broken = [dep for dep in internal if dep not in artifacts]
            if broken:
                failures.append(
                    ComponentFailure(
                        component_name=spec.name,
                        reason=f"Dependency not generated: {', '.join(broken)}",
                        attempts=0,
                    )
                )
                self.sink.progress(f"Skipping {spec.name}: {', '.join(broken)} failed")
                continue

            self.sink.progress(f"Generating code {index}/{total} for component {spec.name}")
            request = self.renderer.component_request(
                spec,
                dependencies=[artifacts[dep] for dep in internal] + self.predefined_dependencies,
                external=external_dependencies(spec, known),
                context=context,
            )
            messages = [
                *conversation,
                ConversationMessage.user(request),
                ConversationMessage.user(format_prompt),
            ]

            try:
                result = await self.protocol.call(
                    messages, ComponentCode, cancel_token=cancel_token
                )
            except ValidationExhausted as exc:
                if self.abort_on_failure:
                    raise
                failures.append(
                    ComponentFailure(
                        component_name=spec.name,
                        reason=str(exc.last_error),
                        attempts=exc.attempts,
                    )
                )
                print_warning(f"Error generating code for component {spec.name}")
                continue

            code = result.value
            if spec.target_path and code.file_path != spec.target_path:
                print_warning(
                    f"Component path mismatch for {spec.name}. "
                    f"Expected: {spec.target_path}, received: {code.file_path}"
                )

            artifacts[spec.name] = GeneratedArtifact.from_response(spec, code)
            conversation.extend(
                [ConversationMessage.user(request), ConversationMessage.assistant(result.raw_text)]
            )
            self.sink.progress(f"Generated code for component {spec.name}")

        report = GenerationReport(
            app_name=context.app_name,
            features=plan.features,
            design=plan.design,
            components=ordered,
            artifacts=list(artifacts.values()),
            failures=failures,
            summary=plan.summary or "",
        )
        return conversation, report
