"""Shared types and errors for the tools package."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from jsonschema import Draft7Validator


class ToolExecutionError(Exception):
    """A tool failed; the message is shown to the model as the tool's error."""


class ToolInputError(ToolExecutionError):
    """Tool input did not match the tool's JSON schema."""


class EditNotFoundError(ToolExecutionError):
    """edit: old_string does not occur in the file."""


class EditNotUniqueError(ToolExecutionError):
    """edit: old_string occurs more than once in the file."""

    def __init__(self, message: str, occurrences: int):
        super().__init__(message)
        self.occurrences = occurrences


@dataclass
class ToolDefinition:
    """A named capability the model may call.

    ``execute`` receives the validated input as keyword arguments.
    ``to_model_output`` optionally turns the raw output into the content
    sent back to the model (e.g. image parts for vision models).
    """
    name: str
    description: str
    input_schema: Dict[str, Any]
    execute: Callable[..., Any]
    to_model_output: Optional[Callable[[Any], Any]] = None
    _validator: Draft7Validator = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._validator = Draft7Validator(self.input_schema)

    def validate(self, tool_input: Dict[str, Any]) -> None:
        errors: List[str] = []
        for err in sorted(self._validator.iter_errors(tool_input), key=lambda e: list(e.path)):
            where = ".".join(str(p) for p in err.path)
            errors.append(f"{where}: {err.message}" if where else err.message)
        if errors:
            raise ToolInputError(f"Invalid input for {self.name}: " + "; ".join(errors))

    def run(self, tool_input: Optional[Dict[str, Any]]) -> Any:
        """Validate then execute. Errors propagate to the caller."""
        tool_input = tool_input or {}
        self.validate(tool_input)
        return self.execute(**tool_input)

    def model_output(self, output: Any) -> Any:
        if self.to_model_output is None:
            return output
        return self.to_model_output(output)

    def spec(self) -> Dict[str, Any]:
        """Anthropic-style tool definition sent to the model."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }
