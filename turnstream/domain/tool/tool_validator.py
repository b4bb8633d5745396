from typing import Dict, Any, List, NamedTuple
import jsonschema

from turnstream.domain.tool.tool_models import ToolDescriptor


class ValidationResult(NamedTuple):
    is_valid: bool
    errors: List[str]


class ToolParameterValidator:
    @staticmethod
    def validate_tool_call(tool: ToolDescriptor, parameters: Dict[str, Any]) -> ValidationResult:
        try:
            # JSON Schema validation
            jsonschema.validate(parameters, tool.input_schema)
            return ValidationResult(True, [])

        except jsonschema.ValidationError as e:
            return ValidationResult(False, [f"Schema validation failed: {e.message}"])
        except jsonschema.SchemaError as e:
            return ValidationResult(False, [f"Invalid schema for tool {tool.name}: {e.message}"])
