"""appbuilder stage engine.

Sequences one app build through its active stages:

Stage PRECHECK      -- Verify the local toolchain.
Stage INITIALIZE    -- Plan the app: features, design, components.
Stage GENERATE_CODE -- Generate every component in dependency order.

Each stage receives the previous stage's messages and output and hands its
own to the next.  A session that reaches ``CANCELLED`` stays there.

Usage::

    python -m appbuilder.pipeline "A recipe keeper with tags and search"
    python -m appbuilder.pipeline "A habit tracker" --app-type mobile -o ./habits
"""

from __future__ import annotations

import asyncio
import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from rich.panel import Panel

from appbuilder.builder.app_builder import (
    StageHandler,
    StageInput,
    StageOutput,
    StageResult,
    create_app_builder,
)
from appbuilder.config import BuildConfig, Config
from appbuilder.gateway import CancelToken, ConversationMessage, ModelGateway, create_gateway
from appbuilder.parser.models import AppPlan, GenerationReport
from appbuilder.parser.validated_call import ValidatedCallProtocol
from appbuilder.utils import (
    ConsoleProgressSink,
    ProgressSink,
    console,
    format_duration,
    print_error,
    print_stage_header,
    print_success,
    print_summary_table,
    print_warning,
    save_json,
)


class Stage(str, Enum):
    """Every stage a build session can be in."""

    NONE = "none"
    PRECHECK = "precheck"
    INITIALIZE = "initialize"
    DESIGN = "design"
    GENERATE_CODE = "generate_code"
    BUILD = "build"
    RUN = "run"
    DEPLOY = "deploy"
    CANCELLED = "cancelled"


DEFAULT_STAGES: tuple[Stage, ...] = (Stage.PRECHECK, Stage.INITIALIZE, Stage.GENERATE_CODE)

# Stages the engine can dispatch to a handler operation.
_DISPATCHABLE = {Stage.PRECHECK, Stage.INITIALIZE, Stage.GENERATE_CODE}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class StageError(Exception):
    """Raised when a stage cannot run at all."""

    def __init__(self, stage: Stage, message: str) -> None:
        self.stage = stage
        super().__init__(f"Stage {stage.value}: {message}")


class MissingStageInput(StageError):
    """A stage was reached without the output of the stage it depends on."""


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


@dataclass
class BuildSession:
    """State of one build request. Only ``StageEngine`` mutates it."""

    user_message: str
    stage: Stage = Stage.NONE
    conversation: list[ConversationMessage] = field(default_factory=list)
    last_output: Optional[StageResult] = None
    outputs: dict[Stage, StageResult] = field(default_factory=dict)
    is_executing: bool = False
    cancel_reason: str | None = None
    visited: list[Stage] = field(default_factory=list)

    @property
    def cancelled(self) -> bool:
        return self.stage == Stage.CANCELLED

    @property
    def plan(self) -> AppPlan | None:
        output = self.outputs.get(Stage.INITIALIZE)
        return output if isinstance(output, AppPlan) else None

    @property
    def report(self) -> GenerationReport | None:
        output = self.outputs.get(Stage.GENERATE_CODE)
        return output if isinstance(output, GenerationReport) else None


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class StageEngine:
    """Drives a ``BuildSession`` through the active stages.

    Attributes:
        session: The session being built.
        handler: Performs the work of each stage.
        stages: Active stage path, in execution order.
        sink: Progress notifications.
    """

    def __init__(
        self,
        session: BuildSession,
        handler: StageHandler,
        stages: list[Stage] | tuple[Stage, ...] = DEFAULT_STAGES,
        sink: ProgressSink | None = None,
        cancel_token: CancelToken | None = None,
    ) -> None:
        active = [Stage(s) for s in stages]
        if not active:
            raise ValueError("At least one stage is required")
        unsupported = [s.value for s in active if s not in _DISPATCHABLE]
        if unsupported:
            raise ValueError(f"No handler operation for stage(s): {', '.join(unsupported)}")
        if len(set(active)) != len(active):
            raise ValueError("Active stages must not repeat")
        if Stage.PRECHECK in active and active[0] != Stage.PRECHECK:
            raise ValueError("precheck must be the first active stage")

        self.session = session
        self.handler = handler
        self.stages = active
        self.sink = sink or ConsoleProgressSink()
        self.cancel_token = cancel_token

    _STAGE_METHODS: dict[Stage, str] = {
        Stage.INITIALIZE: "_run_initialize",
        Stage.GENERATE_CODE: "_run_generate_code",
    }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute(self) -> StageResult | None:
        """Run every remaining active stage.

        Returns:
            The last stage's output, or ``None`` when nothing ran or the
            pre-check failed.

        Raises:
            MissingStageInput: A stage's required input is absent.
            Exception: Whatever a stage handler raised. The session is left
                ``CANCELLED`` with its executing flag still set.
        """
        session = self.session
        if session.is_executing:
            print_warning("Execution already in progress")
            return None
        if session.stage == self.stages[-1]:
            print_warning("Execution already completed")
            return None
        if session.stage == Stage.CANCELLED:
            print_warning("Execution cancelled")
            return None

        session.is_executing = True

        if not await self._run_precheck():
            return None

        current = self._position(session.stage)
        previous = self._resume_point()

        for index, stage in enumerate(self.stages):
            if index <= current or stage == Stage.PRECHECK:
                continue
            if session.stage == Stage.CANCELLED:
                session.is_executing = False
                self.sink.progress(f"Stopped before {stage.value}: {session.cancel_reason}")
                return None

            print_stage_header(stage.value)
            self.sink.progress(f"Starting stage {stage.value}")
            started = time.monotonic()
            stage_input = StageInput(
                user_message=session.user_message,
                previous_messages=list(previous.messages) if previous else [],
                previous_output=previous.output if previous else None,
            )
            try:
                method = getattr(self, self._STAGE_METHODS[stage])
                result: StageOutput = await method(stage_input)
            except MissingStageInput as exc:
                session.stage = Stage.CANCELLED
                session.cancel_reason = str(exc)
                session.is_executing = False
                print_error(str(exc))
                raise
            except Exception as exc:
                session.stage = Stage.CANCELLED
                session.cancel_reason = f"{stage.value} failed: {exc}"
                print_error(
                    f"Stage {stage.value} FAILED after "
                    f"{format_duration(time.monotonic() - started)}: {exc}"
                )
                raise

            self._record(stage, stage_input, result)
            previous = result
            print_success(
                f"Stage {stage.value} completed in "
                f"{format_duration(time.monotonic() - started)}"
            )

        session.is_executing = False
        return session.last_output

    def cancel(self, reason: str = "Cancelled by user") -> None:
        """Refuse further stages and abort any in-flight model request."""
        self.session.stage = Stage.CANCELLED
        self.session.cancel_reason = reason
        if self.cancel_token is not None:
            self.cancel_token.cancel()

    # ------------------------------------------------------------------
    # Stage dispatch
    # ------------------------------------------------------------------

    async def _run_precheck(self) -> bool:
        session = self.session
        if Stage.PRECHECK in self.stages:
            print_stage_header(Stage.PRECHECK.value)
        try:
            ok = await self.handler.precheck()
        except Exception as exc:
            session.stage = Stage.CANCELLED
            session.cancel_reason = f"precheck failed: {exc}"
            raise

        if not ok:
            session.stage = Stage.CANCELLED
            session.cancel_reason = self.handler.precheck_error or "Pre-check failed"
            session.is_executing = False
            print_error(f"Pre-check failed: {session.cancel_reason}")
            self.sink.progress(f"Pre-check failed: {session.cancel_reason}")
            return False

        if Stage.PRECHECK in self.stages and session.stage == Stage.NONE:
            session.stage = Stage.PRECHECK
            session.visited.append(Stage.PRECHECK)
        return True

    async def _run_initialize(self, stage_input: StageInput) -> StageOutput:
        return await self.handler.initialize(stage_input.user_message)

    async def _run_generate_code(self, stage_input: StageInput) -> StageOutput:
        if not isinstance(stage_input.previous_output, AppPlan):
            raise MissingStageInput(
                Stage.GENERATE_CODE, "No app plan from the initialize stage to generate code from"
            )
        return await self.handler.generate_code(stage_input)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _position(self, stage: Stage) -> int:
        """Index of *stage* in the active path, ``-1`` if it is not on it."""
        try:
            return self.stages.index(stage)
        except ValueError:
            return -1

    def _resume_point(self) -> StageOutput | None:
        if self.session.last_output is None:
            return None
        return StageOutput(
            messages=list(self.session.conversation), output=self.session.last_output
        )

    def _record(self, stage: Stage, stage_input: StageInput, result: StageOutput) -> None:
        session = self.session
        prefix = len(stage_input.previous_messages) if stage != Stage.INITIALIZE else 0
        session.conversation.extend(result.messages[prefix:])
        if session.stage != Stage.CANCELLED:
            session.stage = stage
        session.visited.append(stage)
        session.last_output = result.output
        if result.output is not None:
            session.outputs[stage] = result.output


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def create_session(
    config: Config,
    user_message: str,
    gateway: ModelGateway | None = None,
    sink: ProgressSink | None = None,
) -> StageEngine:
    """Wire a gateway, protocol and app builder into a ready ``StageEngine``.

    Args:
        config: Global configuration.
        user_message: The app request.
        gateway: Model backend; built from ``config.gateway`` when omitted.
        sink: Progress notifications; Rich console output when omitted.
    """
    sink = sink or ConsoleProgressSink()
    cancel_token = CancelToken()
    protocol = ValidatedCallProtocol(
        gateway or create_gateway(config.gateway),
        max_retries=config.build.max_retry_count,
        corrective_retries=config.build.corrective_retries,
    )
    handler = create_app_builder(
        config.build.app_type,
        protocol,
        sink=sink,
        build=config.build,
        cancel_token=cancel_token,
    )
    return StageEngine(
        BuildSession(user_message=user_message),
        handler,
        stages=[Stage(s) for s in config.build.stages],
        sink=sink,
        cancel_token=cancel_token,
    )


async def run_build(config: Config, user_message: str) -> BuildSession:
    """Execute a full build and write its hand-off files under ``config.meta_path``."""
    engine = create_session(config, user_message)
    session = engine.session

    console.print(
        Panel(
            f"[bold bright_cyan]appbuilder[/bold bright_cyan]\n"
            f"Request  : {user_message}\n"
            f"App type : {config.build.app_type}\n"
            f"Model    : {config.gateway.provider}/{config.gateway.model}\n"
            f"Stages   : {', '.join(s.value for s in engine.stages)}",
            title="[bold]Build Start[/bold]",
            border_style="bright_cyan",
        )
    )

    started = time.monotonic()
    try:
        await engine.execute()
    finally:
        await _save_handoff(config, session)
        _print_final_summary(session, time.monotonic() - started)
    return session


async def _save_handoff(config: Config, session: BuildSession) -> None:
    config.ensure_directories()
    if session.plan is not None:
        await save_json(session.plan.model_dump(mode="json", by_alias=True), config.plan_path)
    if session.report is not None:
        await save_json(session.report.model_dump(mode="json"), config.result_path)
    await save_json(
        [m.model_dump(mode="json") for m in session.conversation], config.conversation_path
    )


def _print_final_summary(session: BuildSession, elapsed: float) -> None:
    data: dict[str, Any] = {
        "Stage": session.stage.value,
        "Visited": ", ".join(s.value for s in session.visited) or "-",
        "Duration": format_duration(elapsed),
        "Messages": str(len(session.conversation)),
    }
    if session.plan is not None:
        data["App"] = session.plan.name
        data["Components"] = str(len(session.plan.components))
    if session.report is not None:
        data["Generated"] = str(len(session.report.succeeded))
        data["Failed"] = ", ".join(session.report.failed) or "-"
    if session.cancel_reason:
        data["Cancel reason"] = session.cancel_reason
    print_summary_table(data, title="Build Summary")


def main() -> None:
    """CLI entry point for ``python -m appbuilder.pipeline``."""
    import argparse

    parser = argparse.ArgumentParser(
        description="appbuilder -- plan and generate an app from a description",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            '  python -m appbuilder.pipeline "A recipe keeper with tags"\n'
            '  python -m appbuilder.pipeline "A habit tracker" --app-type mobile\n'
            '  python -m appbuilder.pipeline "A blog" --provider openai --model gpt-4o\n'
        ),
    )
    parser.add_argument("request", help="Description of the app to build")
    parser.add_argument("--output", "-o", default=None, help="Output directory (default: ./output)")
    parser.add_argument("--app-type", choices=["web", "mobile"], default=None)
    parser.add_argument(
        "--provider", choices=["ollama", "openai", "anthropic", "openrouter"], default=None
    )
    parser.add_argument("--model", default=None, help="Model name for the provider")
    parser.add_argument(
        "--stages",
        default=None,
        help="Comma-separated stages (default: precheck,initialize,generate_code)",
    )
    parser.add_argument("--max-retries", type=int, default=None)
    parser.add_argument(
        "--skip-node-check", action="store_true", help="Do not require Node.js in the pre-check"
    )

    args = parser.parse_args()

    if not args.request.strip():
        console.print("[bold red]Error:[/bold red] The request must not be empty")
        sys.exit(1)

    try:
        config = Config.from_env()
        if args.output:
            config.output_dir = Path(args.output)
        if args.app_type:
            config.build.app_type = args.app_type
        if args.provider:
            config.gateway.provider = args.provider
        if args.model:
            config.gateway.model = args.model
        if args.stages:
            config.build = BuildConfig(
                **{**config.build.model_dump(), "stages": args.stages.split(",")}
            )
        if args.max_retries is not None:
            config.build.max_retry_count = args.max_retries
        if args.skip_node_check:
            config.build.require_node = False
    except ValueError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)

    try:
        session = asyncio.run(run_build(config, args.request))
    except Exception as exc:
        console.print(f"[bold red]Build failed:[/bold red] {exc}")
        sys.exit(1)

    if session.cancelled:
        console.print("[bold red]Build cancelled.[/bold red]")
        sys.exit(1)
    if session.report is not None and not session.report.ok:
        console.print("[bold yellow]Build finished with failed components.[/bold yellow]")
        sys.exit(2)
    console.print("[bold green]Build completed successfully![/bold green]")


if __name__ == "__main__":
    main()
