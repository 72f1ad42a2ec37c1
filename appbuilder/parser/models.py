"""Pydantic v2 models for app plans and generated component code.

The response models (``AppPlan``, ``ComponentCode``) mirror the JSON the
model is asked to produce, so their fields carry camelCase wire aliases.
The result records (``GeneratedArtifact``, ``ComponentFailure``,
``GenerationReport``) are what the generation stage hands back.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class ComponentKind(str, Enum):
    """Role a planned component plays in the app."""
    UTIL = "util"
    FACTORY = "factory"
    SERVICE = "service"
    UI_COMPONENT = "ui_component"
    SCREEN = "screen"
    CONFIG = "config"
    MODEL = "model"
    LAYOUT = "layout"
    MEDIA = "media"


# ---------------------------------------------------------------------------
# Plan models (Initialize stage response)
# ---------------------------------------------------------------------------

class ComponentSpec(BaseModel):
    """A planned unit of generated code."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, description="Unique component name")
    kind: ComponentKind = Field(..., alias="type")
    purpose: str = Field(default="", description="What the component does")
    target_path: str = Field(default="", alias="path", description="Planned file path")
    depends_on: list[str] = Field(
        default_factory=list,
        alias="dependsOn",
        description="Names of components or libraries this one needs",
    )

    @field_validator("depends_on")
    @classmethod
    def _dedupe(cls, value: list[str]) -> list[str]:
        seen: set[str] = set()
        result: list[str] = []
        for dep in value:
            if dep not in seen:
                seen.add(dep)
                result.append(dep)
        return result


class AppPlan(BaseModel):
    """Full application plan returned by the Initialize call."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1)
    title: str = Field(default="")
    features: list[str] = Field(default_factory=list)
    design: str = Field(default="", description="Mermaid diagram of the app flow")
    architecture: str = Field(default="", description="Architecture notes or diagram")
    components: list[ComponentSpec] = Field(default_factory=list)
    sql_scripts: Optional[str] = Field(default=None, alias="sqlScripts")
    summary: Optional[str] = None
    error: Optional[str] = None

    @model_validator(mode="after")
    def _check_plan(self) -> "AppPlan":
        names = [c.name for c in self.components]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate component names: {', '.join(duplicates)}")
        if not self.architecture:
            self.architecture = self.design
        return self

    def component(self, name: str) -> ComponentSpec | None:
        for spec in self.components:
            if spec.name == name:
                return spec
        return None


# ---------------------------------------------------------------------------
# Code models (GenerateCode stage response)
# ---------------------------------------------------------------------------

class AssetFile(BaseModel):
    """Supplementary file emitted alongside a component (styles, json, ...)."""

    model_config = ConfigDict(populate_by_name=True)

    component_name: str = Field(default="", alias="componentName")
    file_path: str = Field(..., alias="filePath")
    content: str = Field(default="")


class ComponentCode(BaseModel):
    """Model response for a single component."""

    model_config = ConfigDict(populate_by_name=True)

    component_name: str = Field(..., alias="componentName")
    file_path: str = Field(..., alias="filePath")
    content: str
    assets: list[AssetFile] = Field(default_factory=list)
    libraries: list[str] = Field(default_factory=list)
    summary: Optional[str] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class GeneratedArtifact(BaseModel):
    """Source produced for one component. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    component_name: str
    file_path: str
    content: str
    auxiliary_assets: tuple[tuple[str, str], ...] = ()
    libraries_used: frozenset[str] = frozenset()

    @classmethod
    def from_response(cls, spec: ComponentSpec, code: ComponentCode) -> "GeneratedArtifact":
        """Build an artifact for *spec*, falling back to the planned path."""
        return cls(
            component_name=spec.name,
            file_path=code.file_path or spec.target_path,
            content=code.content,
            auxiliary_assets=tuple((a.file_path, a.content) for a in code.assets),
            libraries_used=frozenset(code.libraries),
        )


class ComponentFailure(BaseModel):
    """A component that produced no artifact."""
    component_name: str
    reason: str
    attempts: int = 0


class GenerationReport(BaseModel):
    """Everything the GenerateCode stage produced."""

    app_name: str
    features: list[str] = Field(default_factory=list)
    design: str = ""
    components: list[ComponentSpec] = Field(default_factory=list)
    artifacts: list[GeneratedArtifact] = Field(default_factory=list)
    failures: list[ComponentFailure] = Field(default_factory=list)
    summary: str = ""

    @property
    def succeeded(self) -> list[str]:
        return [a.component_name for a in self.artifacts]

    @property
    def failed(self) -> list[str]:
        return [f.component_name for f in self.failures]

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def libraries(self) -> list[str]:
        """Every external library the generated code asked for, sorted."""
        libs: set[str] = set()
        for artifact in self.artifacts:
            libs |= artifact.libraries_used
        return sorted(libs)
