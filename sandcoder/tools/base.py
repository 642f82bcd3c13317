"""Base types and definitions for tools."""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from sandcoder.errors import SchemaValidationError
from sandcoder.models.llm import ToolSpec


class ToolInput(BaseModel):
    """Base class for tool argument models.

    Strict mode: a string is never coerced into an int or a bool, so declared
    primitive types are enforced exactly as advertised to the model.
    """

    model_config = ConfigDict(strict=True, extra="ignore")


ToolHandler = Callable[[Any], Any]


@dataclass
class ToolDefinition:
    """Definition of a tool available to the AI assistant."""

    name: str
    description: str
    input_schema_class: type[BaseModel]
    handler: ToolHandler

    def get_json_schema(self) -> dict[str, Any]:
        """Get JSON schema for this tool's input."""
        schema = self.input_schema_class.model_json_schema()
        schema.pop("title", None)
        schema.setdefault("properties", {})
        return schema

    def to_spec(self) -> ToolSpec:
        return ToolSpec(name=self.name, description=self.description, input_schema=self.get_json_schema())

    def parse_input(self, raw_input: dict[str, Any]) -> BaseModel:
        """Parse and validate tool input.

        Raises:
            SchemaValidationError: on missing required fields or wrong types
        """
        try:
            return self.input_schema_class.model_validate(raw_input)
        except ValidationError as e:
            errors = [
                f"{'.'.join(str(loc) for loc in error['loc']) or '<input>'}: {error['msg']}" for error in e.errors()
            ]
            raise SchemaValidationError(self.name, errors) from e
