# src/llm2ui/validation.py
"""
Check a parsed JSON value against the UISchema contract.

Design goals:
- Total: any input yields a ValidationResult, never an exception.
- Exhaustive: one pass collects every error in document order.
- Deterministic: same input, same errors, same order (retry prompts depend on it).
- Catalog-optional: component type/prop checks only run when a catalog is given.
"""

from __future__ import annotations

import difflib
from typing import Any, Dict, List, Optional, Set

from .catalog import ComponentCatalog, PropSchema
from .schemas import ErrorCode, ValidationError, ValidationResult


def _json_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def similar_types(name: str, valid_types: List[str], limit: int = 3) -> List[str]:
    """Closest known component names, case-insensitively."""
    lowered = {t.lower(): t for t in valid_types}
    matches = difflib.get_close_matches(name.lower(), list(lowered), n=limit, cutoff=0.5)
    return [lowered[m] for m in matches]


class _Collector:
    """Accumulates errors/warnings for one validate() call."""

    def __init__(self) -> None:
        self.errors: List[ValidationError] = []
        self.warnings: List[ValidationError] = []

    def error(self, path: str, code: ErrorCode, message: str, suggestion: Optional[str] = None) -> None:
        self.errors.append(ValidationError(path=path, code=code, message=message, suggestion=suggestion))

    def warn(self, path: str, code: ErrorCode, message: str, suggestion: Optional[str] = None) -> None:
        self.warnings.append(ValidationError(path=path, code=code, message=message, suggestion=suggestion))


class SchemaValidator:
    """
    Validate candidates against the UISchema contract.

    Args:
      catalog: optional read-only component catalog; enables UNKNOWN_COMPONENT
        and per-prop checks.
      strict_types: when False, unknown component types are reported as
        warnings and do not block acceptance.
    """

    def __init__(self, catalog: Optional[ComponentCatalog] = None, strict_types: bool = True):
        self.catalog = catalog
        self.strict_types = strict_types

    def validate(self, candidate: Any) -> ValidationResult:
        out = _Collector()

        if not isinstance(candidate, dict):
            out.error("", ErrorCode.INVALID_TYPE, f"Schema must be a JSON object, got {_json_type(candidate)}")
            return ValidationResult(errors=out.errors)

        self._check_string_field(candidate, "version", "version", out)

        if "root" not in candidate:
            out.error("root", ErrorCode.MISSING_FIELD, "Missing required field: root")
        else:
            self._validate_component(candidate["root"], "root", set(), out)

        data = candidate.get("data")
        if data is not None and not isinstance(data, dict):
            out.error("data", ErrorCode.INVALID_TYPE, f'Field "data" must be an object, got {_json_type(data)}')

        return ValidationResult(errors=out.errors, warnings=out.warnings)

    # ----- helpers -----

    @staticmethod
    def _check_string_field(obj: Dict[str, Any], field: str, path: str, out: _Collector, where: str = "") -> bool:
        suffix = f' at "{where}"' if where else ""
        if field not in obj:
            out.error(path, ErrorCode.MISSING_FIELD, f"Missing required field: {field}{suffix}")
            return False
        value = obj[field]
        if not isinstance(value, str):
            out.error(path, ErrorCode.INVALID_TYPE, f'Field "{field}" must be a string{suffix}, got {_json_type(value)}')
            return False
        if not value.strip():
            out.error(path, ErrorCode.INVALID_VALUE, f'Field "{field}" cannot be empty{suffix}')
            return False
        return True

    def _validate_component(self, node: Any, path: str, seen_ids: Set[str], out: _Collector) -> None:
        if not isinstance(node, dict):
            out.error(path, ErrorCode.INVALID_TYPE, f'Component at "{path}" must be an object, got {_json_type(node)}')
            return

        if self._check_string_field(node, "id", f"{path}.id", out, where=path):
            component_id = node["id"]
            if component_id in seen_ids:
                out.error(
                    f"{path}.id",
                    ErrorCode.INVALID_VALUE,
                    f'Duplicate component id "{component_id}" at "{path}"',
                    suggestion="Every component id must be unique within the tree",
                )
            else:
                seen_ids.add(component_id)

        type_ok = self._check_string_field(node, "type", f"{path}.type", out, where=path)
        if type_ok and self.catalog is not None:
            self._check_known_type(node["type"], path, out)

        props = node.get("props")
        if props is not None:
            if not isinstance(props, dict):
                out.error(f"{path}.props", ErrorCode.INVALID_TYPE, f'Field "props" must be an object at "{path}", got {_json_type(props)}')
            elif type_ok and self.catalog is not None:
                self._check_props(node["type"], props, path, out)

        text = node.get("text")
        if text is not None and not isinstance(text, str):
            out.error(f"{path}.text", ErrorCode.INVALID_TYPE, f'Field "text" must be a string at "{path}", got {_json_type(text)}')

        children = node.get("children")
        if children is not None:
            if not isinstance(children, list):
                out.error(
                    f"{path}.children",
                    ErrorCode.INVALID_TYPE,
                    f'Field "children" must be an array at "{path}", got {_json_type(children)}',
                )
            else:
                for i, child in enumerate(children):
                    self._validate_component(child, f"{path}.children[{i}]", seen_ids, out)

    def _check_known_type(self, type_name: str, path: str, out: _Collector) -> None:
        catalog = self.catalog
        assert catalog is not None
        if catalog.is_valid_type(type_name):
            return
        resolved = catalog.resolve_alias(type_name)
        if resolved and catalog.is_valid_type(resolved):
            return

        valid = catalog.valid_types()
        close = similar_types(type_name, valid)
        if close:
            suggestion = "Did you mean: " + ", ".join(close) + "?"
        else:
            suggestion = "Valid types: " + ", ".join(valid[:5]) + ("..." if len(valid) > 5 else "")

        report = out.error if self.strict_types else out.warn
        report(
            f"{path}.type",
            ErrorCode.UNKNOWN_COMPONENT,
            f'Unknown component type "{type_name}" at "{path}"',
            suggestion,
        )

    def _check_props(self, type_name: str, props: Dict[str, Any], path: str, out: _Collector) -> None:
        get_schema = getattr(self.catalog, "get_props_schema", None)
        if get_schema is None:
            return
        schema: Optional[Dict[str, PropSchema]] = get_schema(type_name)
        if not schema:
            return

        for name, prop in schema.items():
            prop_path = f"{path}.props.{name}"
            value = props.get(name)
            if value is None:
                if prop.required:
                    out.error(
                        prop_path,
                        ErrorCode.MISSING_FIELD,
                        f'Missing required property "{name}" at "{path}"',
                        suggestion=prop.description or f"type: {prop.type}",
                    )
                continue
            if not prop.matches(value):
                out.error(
                    prop_path,
                    ErrorCode.INVALID_TYPE,
                    f'Invalid type for property "{name}" at "{path}": expected {prop.type}, got {_json_type(value)}',
                )
                continue
            if prop.enum and value not in prop.enum:
                out.error(
                    prop_path,
                    ErrorCode.INVALID_VALUE,
                    f'Invalid value "{value}" for property "{name}" at "{path}"',
                    suggestion="Valid values: " + ", ".join(prop.enum),
                )


def validate(candidate: Any, catalog: Optional[ComponentCatalog] = None) -> ValidationResult:
    """Module-level shorthand for SchemaValidator(catalog).validate(candidate)."""
    return SchemaValidator(catalog).validate(candidate)
