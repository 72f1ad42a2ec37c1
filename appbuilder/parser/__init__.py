"""appbuilder response parsing.

Extracts JSON from free-form model output, validates it against the plan
and component-code schemas, and wraps both in a bounded-retry call protocol.

Usage::

    from appbuilder.parser import ValidatedCallProtocol, AppPlan

    protocol = ValidatedCallProtocol(gateway, max_retries=1)
    result = await protocol.call(messages, AppPlan)
    print(result.value.components)
"""

from appbuilder.parser.extractor import ExtractionFailed, extract_json
from appbuilder.parser.models import (
    AppPlan,
    AssetFile,
    ComponentCode,
    ComponentFailure,
    ComponentKind,
    ComponentSpec,
    GeneratedArtifact,
    GenerationReport,
)
from appbuilder.parser.validated_call import (
    RetryState,
    ValidatedCallProtocol,
    ValidatedResult,
    ValidationExhausted,
)
from appbuilder.parser.validator import SchemaMismatch, SchemaValidator

__all__ = [
    "extract_json",
    "ExtractionFailed",
    "SchemaValidator",
    "SchemaMismatch",
    "ValidatedCallProtocol",
    "ValidatedResult",
    "ValidationExhausted",
    "RetryState",
    "AppPlan",
    "AssetFile",
    "ComponentCode",
    "ComponentFailure",
    "ComponentKind",
    "ComponentSpec",
    "GeneratedArtifact",
    "GenerationReport",
]
