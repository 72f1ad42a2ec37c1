"""Structured model calls with a bounded validation retry.

A ``ValidatedCallProtocol`` sends a conversation through a ``ModelGateway``,
extracts JSON from the reply and validates it against a Pydantic schema.
When extraction or validation fails the same conversation is re-sent, up to
``max_retries`` additional times, after which ``ValidationExhausted`` is
raised carrying the last cause.

Gateway transport errors are not retried here; they propagate unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, TypeVar

from pydantic import BaseModel
from rich.console import Console

from appbuilder.gateway import CancelToken, ConversationMessage, ModelGateway
from appbuilder.parser.extractor import ExtractionFailed, extract_json
from appbuilder.parser.validator import SchemaMismatch, SchemaValidator

console = Console()

T = TypeVar("T", bound=BaseModel)


class ValidationExhausted(Exception):
    """Every attempt produced output that failed extraction or validation."""

    def __init__(self, schema_name: str, attempts: int, last_error: Exception) -> None:
        self.schema_name = schema_name
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"No valid {schema_name} after {attempts} attempt(s): {last_error}"
        )


@dataclass
class RetryState:
    """Attempt counter for one protocol call."""

    bound: int
    attempt: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def exhausted(self) -> bool:
        return self.attempt > self.bound


@dataclass
class ValidatedResult(Generic[T]):
    """A schema-conformant reply and the raw text it came from."""

    raw_text: str
    value: T
    attempts: int


class ValidatedCallProtocol:
    """Turns model replies into validated schema instances.

    Args:
        gateway: Backend used for every attempt.
        max_retries: Default number of retries after the first attempt.
        corrective_retries: When ``True``, each retry carries the failed reply
            and a note describing what was wrong with it.
    """

    def __init__(
        self,
        gateway: ModelGateway,
        max_retries: int = 1,
        corrective_retries: bool = False,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.gateway = gateway
        self.max_retries = max_retries
        self.corrective_retries = corrective_retries

    async def call(
        self,
        messages: list[ConversationMessage],
        schema: type[T],
        max_retries: int | None = None,
        cancel_token: CancelToken | None = None,
    ) -> ValidatedResult[T]:
        """Send *messages* until the reply validates against *schema*.

        Exactly ``max_retries + 1`` gateway calls are made in the worst case.

        Args:
            messages: Conversation to send. Never mutated.
            schema: Pydantic model class the reply must conform to.
            max_retries: Overrides the protocol default for this call.
            cancel_token: Forwarded to the gateway.

        Returns:
            A ``ValidatedResult`` holding the raw text and parsed value.

        Raises:
            ValidationExhausted: All attempts failed extraction or validation.
            ModelGatewayError: Raised by the gateway; not retried.
        """
        bound = self.max_retries if max_retries is None else max_retries
        state = RetryState(bound=bound)
        validator = SchemaValidator(schema)
        conversation = list(messages)
        last_error: Exception | None = None

        while not state.exhausted:
            state.attempt += 1
            raw_text = await self.gateway.send(conversation, cancel_token=cancel_token)

            try:
                value = validator.validate(extract_json(raw_text))
            except (ExtractionFailed, SchemaMismatch) as exc:
                last_error = exc
                state.errors.append(str(exc))
                console.print(
                    f"[yellow]Attempt {state.attempt}/{bound + 1} for "
                    f"{validator.name} rejected:[/yellow] {exc}"
                )
                if self.corrective_retries:
                    conversation = [
                        *messages,
                        ConversationMessage.assistant(raw_text),
                        ConversationMessage.user(_correction_note(exc)),
                    ]
                continue

            return ValidatedResult(raw_text=raw_text, value=value, attempts=state.attempt)

        assert last_error is not None
        raise ValidationExhausted(validator.name, state.attempt, last_error)


def _correction_note(error: Exception) -> str:
    return (
        "Your previous reply could not be used: "
        f"{error}. Reply again with only the JSON object matching the schema."
    )
