"""appbuilder configuration.

Centralised, typed configuration for the build pipeline. All settings use
Pydantic v2 models so they can be validated at construction time and serialised
to/from JSON or environment variables without boiler-plate.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

Provider = Literal["ollama", "openai", "anthropic", "openrouter"]
AppType = Literal["web", "mobile"]

_DEFAULT_URLS: dict[str, str] = {
    "ollama": "http://localhost:11434",
    "openai": "https://api.openai.com/v1",
    "anthropic": "https://api.anthropic.com",
    "openrouter": "https://openrouter.ai/api/v1",
}

# Stage names accepted in ``BuildConfig.stages``.
_KNOWN_STAGES = {
    "none",
    "precheck",
    "initialize",
    "design",
    "generate_code",
    "build",
    "run",
    "deploy",
    "cancelled",
}


class GatewayConfig(BaseModel):
    """Connection settings for the generative-model backend."""

    provider: Provider = Field(default="ollama")
    model: str = Field(default="qwen2.5-coder:32b")
    url: str = Field(default="", description="Base URL; empty means the provider default")
    api_key: str = Field(default="", repr=False)
    timeout: int = Field(default=300, ge=10, description="Per-request timeout in seconds")
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    max_tokens: int = Field(default=8192, ge=256)

    @property
    def base_url(self) -> str:
        """The configured URL, falling back to the provider's public endpoint."""
        return (self.url or _DEFAULT_URLS[self.provider]).rstrip("/")


class BuildConfig(BaseModel):
    """Tuning knobs for the staged build."""

    app_type: AppType = Field(default="web")
    stages: list[str] = Field(
        default=["precheck", "initialize", "generate_code"],
        description="Active stage path, in execution order",
    )
    max_retry_count: int = Field(
        default=1,
        ge=0,
        description="Retries after the first attempt when model output fails validation",
    )
    corrective_retries: bool = Field(
        default=False,
        description="Tell the model what failed validation before retrying",
    )
    abort_on_component_failure: bool = Field(
        default=False,
        description="Stop code generation at the first component that exhausts its retries",
    )
    require_node: bool = Field(default=True, description="Pre-check for a Node.js toolchain")
    min_node_version: str = Field(default="16.0.0")

    @field_validator("stages")
    @classmethod
    def _check_stages(cls, value: list[str]) -> list[str]:
        normalised = [s.strip().lower() for s in value if s.strip()]
        unknown = [s for s in normalised if s not in _KNOWN_STAGES]
        if unknown:
            raise ValueError(f"Unknown stage(s): {', '.join(unknown)}")
        if not normalised:
            raise ValueError("At least one stage is required")
        return normalised


class Config(BaseModel):
    """Global appbuilder configuration.

    Instances are typically created once by the CLI entry point and then
    passed to ``create_session`` which wires the gateway, handler and engine.
    """

    project_name: str = Field(default="")
    output_dir: Path = Field(default=Path("./output"))
    meta_dir: str = Field(default=".appbuilder")
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    build: BuildConfig = Field(default_factory=BuildConfig)

    # ------------------------------------------------------------------
    # Derived paths (read-only properties)
    # ------------------------------------------------------------------

    @property
    def meta_path(self) -> Path:
        """Root of the ``.appbuilder/`` metadata directory inside the output."""
        return self.output_dir / self.meta_dir

    @property
    def plan_path(self) -> Path:
        """Path to the app plan produced by the Initialize stage."""
        return self.meta_path / "plan.json"

    @property
    def result_path(self) -> Path:
        """Path to the generation report (artifacts and failures)."""
        return self.meta_path / "generation.json"

    @property
    def conversation_path(self) -> Path:
        """Path to the recorded model conversation."""
        return self.meta_path / "conversation.json"

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path | None = None) -> Path:
        """Persist the configuration to a JSON file.

        The API key is never written to disk.

        Args:
            path: Destination file. Defaults to ``<meta_path>/config.json``.

        Returns:
            The path where the file was written.
        """
        target = path or (self.meta_path / "config.json")
        target.parent.mkdir(parents=True, exist_ok=True)
        payload = self.model_dump_json(indent=2, exclude={"gateway": {"api_key"}})
        target.write_text(payload, encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load a previously-saved configuration from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "Config":
        """Build a ``Config`` from environment variables.

        Recognised variables (all optional):
            APPBUILDER_PROJECT_NAME, APPBUILDER_OUTPUT_DIR,
            APPBUILDER_PROVIDER, APPBUILDER_MODEL, APPBUILDER_URL,
            APPBUILDER_API_KEY, APPBUILDER_TIMEOUT,
            APPBUILDER_APP_TYPE, APPBUILDER_STAGES, APPBUILDER_MAX_RETRIES,
            APPBUILDER_CORRECTIVE_RETRIES, APPBUILDER_REQUIRE_NODE.
        """
        gateway_kwargs: dict[str, Any] = {}
        if os.environ.get("APPBUILDER_PROVIDER"):
            gateway_kwargs["provider"] = os.environ["APPBUILDER_PROVIDER"].lower()
        if os.environ.get("APPBUILDER_MODEL"):
            gateway_kwargs["model"] = os.environ["APPBUILDER_MODEL"]
        if os.environ.get("APPBUILDER_URL"):
            gateway_kwargs["url"] = os.environ["APPBUILDER_URL"]
        if os.environ.get("APPBUILDER_API_KEY"):
            gateway_kwargs["api_key"] = os.environ["APPBUILDER_API_KEY"]
        if os.environ.get("APPBUILDER_TIMEOUT"):
            gateway_kwargs["timeout"] = int(os.environ["APPBUILDER_TIMEOUT"])

        build_kwargs: dict[str, Any] = {}
        if os.environ.get("APPBUILDER_APP_TYPE"):
            build_kwargs["app_type"] = os.environ["APPBUILDER_APP_TYPE"].lower()
        if os.environ.get("APPBUILDER_STAGES"):
            build_kwargs["stages"] = os.environ["APPBUILDER_STAGES"].split(",")
        if os.environ.get("APPBUILDER_MAX_RETRIES"):
            build_kwargs["max_retry_count"] = int(os.environ["APPBUILDER_MAX_RETRIES"])
        if os.environ.get("APPBUILDER_CORRECTIVE_RETRIES"):
            build_kwargs["corrective_retries"] = _env_flag("APPBUILDER_CORRECTIVE_RETRIES")
        if os.environ.get("APPBUILDER_REQUIRE_NODE"):
            build_kwargs["require_node"] = _env_flag("APPBUILDER_REQUIRE_NODE")

        return cls(
            project_name=os.environ.get("APPBUILDER_PROJECT_NAME", ""),
            output_dir=Path(os.environ.get("APPBUILDER_OUTPUT_DIR", "./output")),
            gateway=GatewayConfig(**gateway_kwargs),
            build=BuildConfig(**build_kwargs),
        )

    def ensure_directories(self) -> None:
        """Create the directories the CLI writes its hand-off files into."""
        self.meta_path.mkdir(parents=True, exist_ok=True)


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")
