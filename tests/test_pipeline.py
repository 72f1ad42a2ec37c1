"""Unit tests for the stage engine (appbuilder.pipeline).

Tests cover:
- StageEngine construction (unsupported, repeated and misplaced stages)
- execute(): stage order, output chaining, conversation accumulation
- Guards: already executing, already complete, cancelled
- Pre-check failure
- MissingStageInput and handler exceptions
- cancel()
- create_session wiring and run_build hand-off files
"""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from appbuilder.builder.app_builder import StageInput, StageOutput
from appbuilder.config import BuildConfig, Config
from appbuilder.gateway import CancelToken, ConversationMessage
from appbuilder.parser.models import AppPlan, GenerationReport
from appbuilder.pipeline import (
    BuildSession,
    MissingStageInput,
    Stage,
    StageEngine,
    StageError,
    create_session,
    run_build,
)
from appbuilder.utils import NullProgressSink

pytestmark = pytest.mark.unit


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class FakeHandler:
    """Records every stage call and returns canned outputs."""

    app_type = "web"
    tech_stack = None

    def __init__(self, plan: AppPlan, precheck_ok: bool = True) -> None:
        self.plan = plan
        self.precheck_ok = precheck_ok
        self.precheck_error: str | None = None
        self.calls: list[str] = []
        self.generate_inputs: list[StageInput] = []

    async def precheck(self) -> bool:
        self.calls.append("precheck")
        if not self.precheck_ok:
            self.precheck_error = "Node.js is not installed."
        return self.precheck_ok

    async def initialize(self, user_message: str) -> StageOutput:
        self.calls.append("initialize")
        return StageOutput(
            messages=[
                ConversationMessage.system("instructions"),
                ConversationMessage.user(f"Create app for: {user_message}"),
                ConversationMessage.assistant("{plan}"),
            ],
            output=self.plan,
        )

    async def generate_code(self, stage_input: StageInput) -> StageOutput:
        self.calls.append("generate_code")
        self.generate_inputs.append(stage_input)
        return StageOutput(
            messages=[
                *stage_input.previous_messages,
                ConversationMessage.user("kickoff"),
                ConversationMessage.user("request A"),
                ConversationMessage.assistant("code A"),
            ],
            output=GenerationReport(app_name=self.plan.name),
        )


def _engine(handler, stages=None, session=None, sink=None, **kwargs) -> StageEngine:
    return StageEngine(
        session or BuildSession(user_message="A recipe keeper"),
        handler,
        stages=stages or [Stage.PRECHECK, Stage.INITIALIZE, Stage.GENERATE_CODE],
        sink=sink or NullProgressSink(),
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    def test_default_stages(self, sample_plan):
        engine = StageEngine(BuildSession(user_message="x"), FakeHandler(sample_plan))
        assert engine.stages == [Stage.PRECHECK, Stage.INITIALIZE, Stage.GENERATE_CODE]

    def test_accepts_stage_names(self, sample_plan):
        engine = _engine(FakeHandler(sample_plan), stages=["initialize", "generate_code"])
        assert engine.stages == [Stage.INITIALIZE, Stage.GENERATE_CODE]

    @pytest.mark.parametrize("stage", [Stage.DESIGN, Stage.BUILD, Stage.RUN, Stage.DEPLOY, Stage.NONE])
    def test_unsupported_stage_rejected(self, sample_plan, stage):
        with pytest.raises(ValueError, match="No handler operation"):
            _engine(FakeHandler(sample_plan), stages=[Stage.INITIALIZE, stage])

    def test_repeated_stage_rejected(self, sample_plan):
        with pytest.raises(ValueError, match="must not repeat"):
            _engine(FakeHandler(sample_plan), stages=[Stage.INITIALIZE, Stage.INITIALIZE])

    def test_precheck_must_be_first(self, sample_plan):
        with pytest.raises(ValueError, match="first"):
            _engine(FakeHandler(sample_plan), stages=[Stage.INITIALIZE, Stage.PRECHECK])

    def test_missing_stage_input_is_stage_error(self):
        exc = MissingStageInput(Stage.GENERATE_CODE, "no plan")
        assert isinstance(exc, StageError)
        assert exc.stage == Stage.GENERATE_CODE
        assert "generate_code" in str(exc)


# ---------------------------------------------------------------------------
# execute(): happy path
# ---------------------------------------------------------------------------


class TestExecute:
    @pytest.mark.asyncio
    async def test_full_traversal(self, sample_plan):
        handler = FakeHandler(sample_plan)
        engine = _engine(handler)

        result = await engine.execute()

        assert handler.calls == ["precheck", "initialize", "generate_code"]
        assert isinstance(result, GenerationReport)
        session = engine.session
        assert session.stage == Stage.GENERATE_CODE
        assert session.visited == [Stage.PRECHECK, Stage.INITIALIZE, Stage.GENERATE_CODE]
        assert session.is_executing is False
        assert session.plan is sample_plan
        assert session.report is result

    @pytest.mark.asyncio
    async def test_stage_notices_sent_to_sink(self, sample_plan):
        sink = MagicMock()
        engine = _engine(FakeHandler(sample_plan), sink=sink)

        await engine.execute()

        notices = [c.args[0] for c in sink.progress.call_args_list]
        assert notices == ["Starting stage initialize", "Starting stage generate_code"]

    @pytest.mark.asyncio
    async def test_previous_stage_output_fed_forward(self, sample_plan):
        handler = FakeHandler(sample_plan)
        engine = _engine(handler)

        await engine.execute()

        stage_input = handler.generate_inputs[0]
        assert stage_input.previous_output is sample_plan
        assert [m.content for m in stage_input.previous_messages] == [
            "instructions",
            "Create app for: A recipe keeper",
            "{plan}",
        ]

    @pytest.mark.asyncio
    async def test_conversation_appended_without_duplicates(self, sample_plan):
        engine = _engine(FakeHandler(sample_plan))

        await engine.execute()

        contents = [m.content for m in engine.session.conversation]
        assert contents == [
            "instructions",
            "Create app for: A recipe keeper",
            "{plan}",
            "kickoff",
            "request A",
            "code A",
        ]

    @pytest.mark.asyncio
    async def test_second_execute_is_noop(self, sample_plan):
        handler = FakeHandler(sample_plan)
        engine = _engine(handler)
        await engine.execute()

        with patch("appbuilder.pipeline.print_warning") as warn:
            assert await engine.execute() is None

        assert handler.calls == ["precheck", "initialize", "generate_code"]
        assert "already completed" in warn.call_args[0][0]

    @pytest.mark.asyncio
    async def test_initialize_only_path(self, sample_plan):
        handler = FakeHandler(sample_plan)
        engine = _engine(handler, stages=[Stage.INITIALIZE])

        result = await engine.execute()

        assert result is sample_plan
        assert handler.calls == ["precheck", "initialize"]
        assert engine.session.visited == [Stage.INITIALIZE]
        assert engine.session.stage == Stage.INITIALIZE

    @pytest.mark.asyncio
    async def test_resume_skips_completed_stages(self, sample_plan):
        handler = FakeHandler(sample_plan)
        session = BuildSession(
            user_message="A recipe keeper",
            stage=Stage.INITIALIZE,
            conversation=[ConversationMessage.user("earlier")],
            last_output=sample_plan,
        )
        engine = _engine(handler, session=session)

        await engine.execute()

        assert handler.calls == ["precheck", "generate_code"]
        assert handler.generate_inputs[0].previous_output is sample_plan
        assert [m.content for m in session.conversation][:1] == ["earlier"]
        assert session.stage == Stage.GENERATE_CODE


# ---------------------------------------------------------------------------
# execute(): guards and failures
# ---------------------------------------------------------------------------


class TestGuards:
    @pytest.mark.asyncio
    async def test_already_executing_is_noop(self, sample_plan):
        handler = FakeHandler(sample_plan)
        engine = _engine(handler)
        engine.session.is_executing = True

        with patch("appbuilder.pipeline.print_warning") as warn:
            assert await engine.execute() is None

        assert handler.calls == []
        assert "in progress" in warn.call_args[0][0]

    @pytest.mark.asyncio
    async def test_cancelled_is_noop(self, sample_plan):
        handler = FakeHandler(sample_plan)
        engine = _engine(handler, session=BuildSession(user_message="x", stage=Stage.CANCELLED))

        assert await engine.execute() is None
        assert handler.calls == []


class TestFailures:
    @pytest.mark.asyncio
    async def test_precheck_failure_cancels_without_raising(self, sample_plan):
        handler = FakeHandler(sample_plan, precheck_ok=False)
        engine = _engine(handler)

        assert await engine.execute() is None

        session = engine.session
        assert handler.calls == ["precheck"]
        assert session.stage == Stage.CANCELLED
        assert session.cancel_reason == "Node.js is not installed."
        assert session.is_executing is False

    @pytest.mark.asyncio
    async def test_precheck_failure_reported_to_sink(self, sample_plan):
        sink = MagicMock()
        engine = _engine(FakeHandler(sample_plan, precheck_ok=False), sink=sink)

        await engine.execute()

        sink.progress.assert_called_once_with("Pre-check failed: Node.js is not installed.")

    @pytest.mark.asyncio
    async def test_generate_without_plan_raises_missing_input(self, sample_plan):
        handler = FakeHandler(sample_plan)
        engine = _engine(handler, stages=[Stage.GENERATE_CODE])

        with pytest.raises(MissingStageInput):
            await engine.execute()

        session = engine.session
        assert session.stage == Stage.CANCELLED
        assert session.is_executing is False
        assert "app plan" in session.cancel_reason
        assert "generate_code" not in handler.calls

    @pytest.mark.asyncio
    async def test_handler_exception_leaves_guard_engaged(self, sample_plan):
        handler = FakeHandler(sample_plan)
        handler.initialize = AsyncMock(side_effect=RuntimeError("model offline"))
        engine = _engine(handler)

        with pytest.raises(RuntimeError, match="model offline"):
            await engine.execute()

        session = engine.session
        assert session.stage == Stage.CANCELLED
        assert session.is_executing is True
        assert "model offline" in session.cancel_reason
        assert "generate_code" not in handler.calls

        # The session is single-use after a fatal error.
        with patch("appbuilder.pipeline.print_warning"):
            assert await engine.execute() is None

    @pytest.mark.asyncio
    async def test_cancel_between_stages(self, sample_plan):
        handler = FakeHandler(sample_plan)
        token = CancelToken()
        engine = _engine(handler, cancel_token=token)
        original_initialize = handler.initialize

        async def initialize_then_cancel(message):
            output = await original_initialize(message)
            engine.cancel("User pressed stop")
            return output

        handler.initialize = initialize_then_cancel

        assert await engine.execute() is None
        assert handler.calls == ["precheck", "initialize"]
        assert engine.session.cancel_reason == "User pressed stop"
        assert engine.session.is_executing is False
        assert token.cancelled is True


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


@pytest.mark.integration
class TestWiring:
    @pytest.mark.asyncio
    async def test_create_session_end_to_end(
        self, tmp_config, scripted_gateway, sample_plan_dict, component_reply
    ):
        gateway = scripted_gateway(
            json.dumps(sample_plan_dict),
            component_reply("recipeStore", "src/store/recipeStore.ts"),
            component_reply("RecipeList", "src/components/RecipeList.tsx"),
            component_reply("HomePage", "src/app/page.tsx"),
        )
        engine = create_session(tmp_config, "A recipe keeper", gateway=gateway, sink=NullProgressSink())

        report = await engine.execute()

        assert report.succeeded == ["recipeStore", "RecipeList", "HomePage"]
        assert engine.session.plan.name == "recipe-keeper"
        # system, request, reply, kickoff, 3 x (request, reply)
        assert len(engine.session.conversation) == 10

    def test_create_session_uses_config(self, tmp_config, scripted_gateway):
        config = tmp_config.model_copy(
            update={"build": BuildConfig(require_node=False, app_type="mobile", max_retry_count=3,
                                         stages=["initialize"])}
        )
        engine = create_session(config, "x", gateway=scripted_gateway())
        assert engine.handler.app_type == "mobile"
        assert engine.handler.protocol.max_retries == 3
        assert engine.stages == [Stage.INITIALIZE]

    @pytest.mark.asyncio
    async def test_run_build_writes_handoff(
        self, tmp_config: Config, scripted_gateway, sample_plan_dict, component_reply
    ):
        gateway = scripted_gateway(
            json.dumps(sample_plan_dict),
            component_reply("recipeStore", "src/store/recipeStore.ts"),
            "garbage",
            "garbage",
        )
        with patch("appbuilder.pipeline.create_gateway", return_value=gateway):
            session = await run_build(tmp_config, "A recipe keeper")

        plan = json.loads(Path(tmp_config.plan_path).read_text(encoding="utf-8"))
        result = json.loads(Path(tmp_config.result_path).read_text(encoding="utf-8"))
        conversation = json.loads(Path(tmp_config.conversation_path).read_text(encoding="utf-8"))

        assert plan["name"] == "recipe-keeper"
        assert plan["components"][0]["dependsOn"] == ["RecipeList", "react"]
        assert [a["component_name"] for a in result["artifacts"]] == ["recipeStore"]
        assert [f["component_name"] for f in result["failures"]] == ["RecipeList", "HomePage"]
        assert conversation[0]["role"] == "system"
        assert session.report.ok is False
