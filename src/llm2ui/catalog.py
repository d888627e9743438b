# src/llm2ui/catalog.py
"""
Read-only component catalog consumed by the validator and the prompt builder.

- ComponentCatalog: the protocol the core depends on.
- PropSchema: tagged-variant description of one component prop.
- StaticCatalog: in-memory implementation (alias map, case-insensitive lookup).
- default_catalog(): a fresh StaticCatalog with a basic component set.

The catalog is always passed in explicitly; there is no process-wide instance.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, model_validator

from . import utils


PropType = Literal["string", "number", "boolean", "object", "array", "function"]


class PropSchema(BaseModel):
    """One prop of a component: variant tag plus required/default/enum contract."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: PropType
    required: bool = False
    default: Any = None
    enum: Optional[List[str]] = None
    description: str = ""

    @model_validator(mode="after")
    def _enum_only_for_strings(self) -> PropSchema:
        if self.enum is not None and self.type != "string":
            raise ValueError("enum is only supported for string props")
        return self

    def matches(self, value: Any) -> bool:
        """True when a JSON value belongs to this prop's variant."""
        if self.type == "string":
            return isinstance(value, str)
        if self.type == "number":
            return isinstance(value, (int, float)) and not isinstance(value, bool)
        if self.type == "boolean":
            return isinstance(value, bool)
        if self.type == "object":
            return isinstance(value, dict)
        if self.type == "array":
            return isinstance(value, list)
        # Functions cannot travel over JSON; models reference handlers by name.
        return isinstance(value, str)


class ComponentDefinition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1)
    category: str = "uncategorized"
    description: str = ""
    props_schema: Dict[str, PropSchema] = Field(default_factory=dict)
    deprecated: bool = False


@runtime_checkable
class ComponentCatalog(Protocol):
    """What the validator needs. get_props_schema/version are optional extras."""

    def is_valid_type(self, name: str) -> bool:
        ...

    def resolve_alias(self, name: str) -> Optional[str]:
        ...

    def valid_types(self) -> List[str]:
        ...


# Common spellings models use for the canonical component names.
TYPE_ALIAS_MAP: Dict[str, str] = {
    # html elements
    "div": "Container",
    "span": "Text",
    "img": "Image",
    "a": "Link",
    # layout containers
    "box": "Container",
    "wrapper": "Container",
    "section": "Container",
    "view": "Container",
    "flex": "Container",
    "grid": "Container",
    "stack": "Container",
    "row": "Container",
    "column": "Container",
    # abbreviations
    "btn": "Button",
    "txt": "Text",
    "lbl": "Label",
    "inp": "Input",
    "sel": "Select",
    "chk": "Checkbox",
    "tbl": "Table",
    # spelling variants
    "textfield": "Input",
    "textbox": "Input",
    "dropdown": "Select",
    # semantic text
    "heading": "Text",
    "title": "Text",
    "paragraph": "Text",
    "h1": "Text",
    "h2": "Text",
    "h3": "Text",
    "h4": "Text",
    "h5": "Text",
    "h6": "Text",
}


class StaticCatalog:
    """
    Immutable in-memory catalog.

    Type resolution order: exact name, alias map (case-insensitive),
    case-insensitive name. `version` is a content hash unless given, so it
    can feed prompt cache keys directly.
    """

    def __init__(
        self,
        definitions: Iterable[ComponentDefinition],
        aliases: Optional[Mapping[str, str]] = None,
        version: Optional[str] = None,
    ):
        self._definitions: Dict[str, ComponentDefinition] = {d.name: d for d in definitions}
        self._by_lower: Dict[str, str] = {name.lower(): name for name in self._definitions}
        alias_map = TYPE_ALIAS_MAP if aliases is None else aliases
        self._aliases: Dict[str, str] = {
            alias.lower(): target for alias, target in alias_map.items() if target in self._definitions
        }
        self.version = version or utils.stable_hash(
            {
                "components": [d.model_dump() for d in self._definitions.values()],
                "aliases": self._aliases,
            }
        )[:16]

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.canonical_name(name) is not None

    def valid_types(self) -> List[str]:
        return sorted(self._definitions)

    def resolve_alias(self, name: str) -> Optional[str]:
        """Canonical name for a known alias, else None."""
        return self._aliases.get(name.lower())

    def canonical_name(self, name: str) -> Optional[str]:
        if name in self._definitions:
            return name
        resolved = self.resolve_alias(name)
        if resolved:
            return resolved
        return self._by_lower.get(name.lower())

    def is_valid_type(self, name: str) -> bool:
        return self.canonical_name(name) is not None

    def get(self, name: str) -> Optional[ComponentDefinition]:
        canonical = self.canonical_name(name)
        return self._definitions.get(canonical) if canonical else None

    def get_props_schema(self, name: str) -> Optional[Dict[str, PropSchema]]:
        definition = self.get(name)
        return dict(definition.props_schema) if definition else None

    def describe(self) -> str:
        """Markdown reference of every component, grouped by category, for prompts."""
        by_category: Dict[str, List[ComponentDefinition]] = {}
        for d in self._definitions.values():
            if d.deprecated:
                continue
            by_category.setdefault(d.category, []).append(d)

        lines: List[str] = []
        for category in sorted(by_category):
            lines.append(f"### {category}")
            for d in sorted(by_category[category], key=lambda x: x.name):
                props = ", ".join(_describe_prop(n, p) for n, p in d.props_schema.items())
                line = f"- {d.name}"
                if d.description:
                    line += f": {d.description}"
                if props:
                    line += f" (props: {props})"
                lines.append(line)
            lines.append("")
        return "\n".join(lines).strip()


def _describe_prop(name: str, prop: PropSchema) -> str:
    out = f"{name}{'' if prop.required else '?'}: {prop.type}"
    if prop.enum:
        out += " [" + "|".join(prop.enum) + "]"
    return out


def _prop(type_: PropType, **kwargs: Any) -> PropSchema:
    return PropSchema(type=type_, **kwargs)


def default_catalog() -> StaticCatalog:
    """A fresh catalog with the basic layout, text, form and data components."""
    size = ["sm", "md", "lg"]
    return StaticCatalog(
        [
            ComponentDefinition(
                name="Container",
                category="layout",
                description="Generic box that lays out its children",
                props_schema={
                    "direction": _prop("string", enum=["row", "column"], default="column"),
                    "gap": _prop("number"),
                },
            ),
            ComponentDefinition(
                name="Card",
                category="layout",
                description="Bordered surface with an optional title",
                props_schema={"title": _prop("string")},
            ),
            ComponentDefinition(
                name="Text",
                category="display",
                description="Static text; put the content in `text`",
                props_schema={
                    "variant": _prop("string", enum=["body", "h1", "h2", "h3", "caption"], default="body"),
                },
            ),
            ComponentDefinition(
                name="Label",
                category="display",
                description="Caption for a form field",
                props_schema={"htmlFor": _prop("string")},
            ),
            ComponentDefinition(
                name="Image",
                category="display",
                props_schema={"src": _prop("string", required=True), "alt": _prop("string")},
            ),
            ComponentDefinition(
                name="Link",
                category="display",
                props_schema={"href": _prop("string", required=True)},
            ),
            ComponentDefinition(
                name="Button",
                category="input",
                description="Clickable action",
                props_schema={
                    "variant": _prop("string", enum=["default", "primary", "secondary", "outline", "ghost", "destructive"]),
                    "size": _prop("string", enum=size),
                    "disabled": _prop("boolean", default=False),
                    "onClick": _prop("function"),
                },
            ),
            ComponentDefinition(
                name="Input",
                category="input",
                props_schema={
                    "type": _prop("string", enum=["text", "email", "password", "number", "search"], default="text"),
                    "placeholder": _prop("string"),
                    "name": _prop("string"),
                },
            ),
            ComponentDefinition(
                name="Select",
                category="input",
                props_schema={"options": _prop("array", required=True), "placeholder": _prop("string")},
            ),
            ComponentDefinition(
                name="Checkbox",
                category="input",
                props_schema={"checked": _prop("boolean"), "label": _prop("string")},
            ),
            ComponentDefinition(
                name="Form",
                category="input",
                description="Groups inputs and submits them together",
                props_schema={"onSubmit": _prop("function")},
            ),
            ComponentDefinition(
                name="Table",
                category="data",
                props_schema={"columns": _prop("array", required=True), "rows": _prop("array")},
            ),
        ]
    )
