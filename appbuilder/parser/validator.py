"""Check decoded JSON against a Pydantic response schema."""

from __future__ import annotations

import json
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

T = TypeVar("T", bound=BaseModel)


class SchemaMismatch(Exception):
    """A decoded value does not conform to the expected schema.

    Attributes:
        field_errors: ``(location, message)`` pairs, one per violated field.
    """

    def __init__(self, schema_name: str, field_errors: list[tuple[str, str]]) -> None:
        self.schema_name = schema_name
        self.field_errors = field_errors
        details = "; ".join(f"{loc}: {msg}" for loc, msg in field_errors)
        super().__init__(f"{schema_name} validation failed: {details}")


class SchemaValidator(Generic[T]):
    """Validates values against a single response model class."""

    def __init__(self, schema: type[T]) -> None:
        self.schema = schema

    @property
    def name(self) -> str:
        return self.schema.__name__

    def validate(self, value: Any) -> T:
        """Return a ``schema`` instance built from *value*.

        Raises:
            SchemaMismatch: With one entry per failing field.
        """
        if not isinstance(value, dict):
            raise SchemaMismatch(
                self.name, [("<root>", f"expected an object, got {type(value).__name__}")]
            )
        try:
            return self.schema.model_validate(value)
        except ValidationError as exc:
            errors = [
                (".".join(str(part) for part in err["loc"]) or "<root>", err["msg"])
                for err in exc.errors()
            ]
            raise SchemaMismatch(self.name, errors) from exc

    def schema_prompt(self) -> str:
        """The JSON schema (wire names) as indented text for prompting."""
        return json.dumps(self.schema.model_json_schema(by_alias=True), indent=2)
