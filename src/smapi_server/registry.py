"""Operation Registry for the SMAPI server.

Holds the declarative definition of every SMAPI operation: its parameter
schema and the defaults applied when a parameter element is missing.
Raw element text is coerced to typed values and validated before dispatch.
"""

from typing import Any, Optional

from jsonschema import Draft7Validator

from shared.logging import get_logger
from shared.models import OperationDefinition
from smapi_server.envelope import ClientProtocolError

logger = get_logger(__name__)

TRUE_VALUES = {"true", "1"}
FALSE_VALUES = {"false", "0"}


def validate_schema(data: Any, schema: dict[str, Any]) -> tuple[bool, list[str]]:
    """
    Validate data against a JSON Schema.

    Returns:
        Tuple of (is_valid, list of error messages)
    """
    if not schema:
        return True, []

    errors = list(Draft7Validator(schema).iter_errors(data))
    if not errors:
        return True, []

    return False, [
        f"{'.'.join(str(p) for p in e.path)}: {e.message}" if e.path else e.message
        for e in errors
    ]


def _coerce(name: str, raw: str, json_type: Optional[str]) -> Any:
    if json_type == "integer":
        try:
            return int(raw)
        except ValueError:
            raise ClientProtocolError(f"Parameter '{name}' must be an integer")

    if json_type == "boolean":
        lowered = raw.lower()
        if lowered in TRUE_VALUES:
            return True
        if lowered in FALSE_VALUES:
            return False
        raise ClientProtocolError(f"Parameter '{name}' must be a boolean")

    return raw


class OperationRegistry:
    """
    Central registry of SMAPI operations.

    Responsibilities:
    - Register operation definitions
    - Look up operations by name
    - Turn raw SOAP parameters into validated, typed arguments
    """

    def __init__(self) -> None:
        self._operations: dict[str, OperationDefinition] = {}

    def register(self, operation: OperationDefinition) -> None:
        """
        Register an operation.

        Raises:
            ValueError: If the name is already registered
        """
        if operation.name in self._operations:
            raise ValueError(f"Operation '{operation.name}' is already registered")

        self._operations[operation.name] = operation
        logger.debug("Operation registered", operation=operation.name)

    def get(self, name: str) -> Optional[OperationDefinition]:
        return self._operations.get(name)

    def list_operations(self, include_deprecated: bool = False) -> list[OperationDefinition]:
        operations = list(self._operations.values())
        if not include_deprecated:
            operations = [o for o in operations if not o.deprecated]
        return operations

    def prepare_parameters(self, name: str, raw: dict[str, str]) -> dict[str, Any]:
        """
        Coerce and validate the parameters of a call.

        Only parameters declared in the schema are kept. Missing ones take
        the operation's defaults, and so do empty elements such as
        ``<ns:index/>``.

        Raises:
            ClientProtocolError: On unknown operations, unparsable values or
                schema violations
        """
        operation = self.get(name)
        if operation is None:
            raise ClientProtocolError(f"Operation '{name}' not found")

        properties = operation.input_schema.get("properties", {})
        params: dict[str, Any] = {}

        for key, prop in properties.items():
            value = raw.get(key)
            if key in operation.defaults and (value is None or not value.strip()):
                params[key] = operation.defaults[key]
            elif value is not None:
                params[key] = _coerce(key, value, prop.get("type"))

        is_valid, errors = validate_schema(params, operation.input_schema)
        if not is_valid:
            raise ClientProtocolError(f"Validation failed: {'; '.join(errors)}")

        return params


def _string(description: str) -> dict[str, Any]:
    return {"type": "string", "description": description}


INDEX = {"type": "integer", "minimum": 0, "description": "First entry of the window"}
COUNT = {"type": "integer", "minimum": 0, "description": "Maximum entries to return"}


def build_default_registry() -> OperationRegistry:
    """Registry with every SMAPI operation this service answers."""
    registry = OperationRegistry()

    registry.register(OperationDefinition(
        name="getAppLink",
        description="Where the Sonos app sends the user to link an account",
        input_schema={
            "type": "object",
            "properties": {"householdId": _string("Sonos household id")},
        },
        defaults={"householdId": ""},
    ))

    registry.register(OperationDefinition(
        name="getMetadata",
        description="Browse one node of the library",
        input_schema={
            "type": "object",
            "properties": {
                "id": _string("Catalog address"),
                "index": INDEX,
                "count": COUNT,
                "recursive": {"type": "boolean"},
            },
            "required": ["id", "index", "count"],
        },
        defaults={"id": "", "index": 0, "count": 100, "recursive": False},
    ))

    registry.register(OperationDefinition(
        name="getMediaMetadata",
        description="Metadata for a single track",
        input_schema={
            "type": "object",
            "properties": {"id": _string("Track address")},
            "required": ["id"],
        },
    ))

    registry.register(OperationDefinition(
        name="getMediaURI",
        description="Streaming URL for a track",
        input_schema={
            "type": "object",
            "properties": {"id": _string("Track address")},
            "required": ["id"],
        },
    ))

    registry.register(OperationDefinition(
        name="search",
        description="Search artists, albums or tracks",
        input_schema={
            "type": "object",
            "properties": {
                "id": _string("Search category"),
                "term": _string("Search term"),
                "index": INDEX,
                "count": COUNT,
            },
            "required": ["id", "term"],
        },
        defaults={"term": "", "index": 0, "count": 100},
    ))

    registry.register(OperationDefinition(
        name="reportAccountAction",
        description="Account events such as sign-out",
        input_schema={
            "type": "object",
            "properties": {"type": _string("Action type")},
        },
        defaults={"type": ""},
    ))

    registry.register(OperationDefinition(
        name="getDeviceAuthToken",
        description="Legacy device-link token exchange, replaced by OAuth",
        deprecated=True,
    ))

    return registry
