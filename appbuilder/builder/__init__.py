"""appbuilder builder module.

Turns an app plan into generated component source.

Key classes:
    DependencyResolver  - Orders components after their internal dependencies
    GenerationPipeline  - Requests code for each component in resolved order
    PromptRenderer      - Jinja2 rendering of every prompt sent to the model
    AppBuilder          - Stage handler composed with a TechStack
    WebTechStack / MobileTechStack - Target stack strategies
"""

from .app_builder import (
    AppBuilder,
    InvalidBuildRequest,
    StageHandler,
    StageInput,
    StageOutput,
    create_app_builder,
)
from .generation import GenerationPipeline
from .prompts import ProjectContext, PromptRenderer
from .resolver import (
    CyclicDependency,
    DependencyResolver,
    external_dependencies,
    internal_dependencies,
)
from .stacks import MobileTechStack, TechStack, WebTechStack, default_stack

__all__ = [
    # Stage handlers
    "AppBuilder",
    "StageHandler",
    "StageInput",
    "StageOutput",
    "InvalidBuildRequest",
    "create_app_builder",
    # Generation
    "GenerationPipeline",
    "ProjectContext",
    "PromptRenderer",
    # Resolver
    "DependencyResolver",
    "CyclicDependency",
    "internal_dependencies",
    "external_dependencies",
    # Stacks
    "TechStack",
    "WebTechStack",
    "MobileTechStack",
    "default_stack",
]
