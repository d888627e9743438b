# tests/test_validation.py
import pytest  # pyright: ignore[reportMissingImports]

from llm2ui.catalog import ComponentDefinition, PropSchema, StaticCatalog, default_catalog
from llm2ui.schemas import ErrorCode, ValidationResult
from llm2ui.validation import SchemaValidator, similar_types, validate

from conftest import valid_schema


def _codes(result: ValidationResult):
    return [(e.code, e.path) for e in result.errors]


@pytest.mark.parametrize("value", [None, 1, "text", [1, 2], True, 2.5])
def test_non_object_input_yields_exactly_one_invalid_type(value):
    result = validate(value)
    assert not result.valid
    assert _codes(result) == [(ErrorCode.INVALID_TYPE, "")]


def test_valid_schema_passes_without_catalog():
    result = validate(valid_schema())
    assert result.valid
    assert result.errors == []


def test_missing_root_and_version():
    result = validate({})
    assert _codes(result) == [
        (ErrorCode.MISSING_FIELD, "version"),
        (ErrorCode.MISSING_FIELD, "root"),
    ]


def test_version_type_and_blank_checks():
    assert _codes(validate({"version": 1, "root": {"id": "a", "type": "Text"}})) == [
        (ErrorCode.INVALID_TYPE, "version")
    ]
    assert _codes(validate({"version": "  ", "root": {"id": "a", "type": "Text"}})) == [
        (ErrorCode.INVALID_VALUE, "version")
    ]


def test_missing_root_id_is_single_error():
    result = validate({"version": "1.0", "root": {"type": "Button"}})
    assert _codes(result) == [(ErrorCode.MISSING_FIELD, "root.id")]
    assert "id" in result.errors[0].message


def test_component_field_errors_are_collected_in_document_order():
    schema = {
        "version": "1.0",
        "root": {
            "id": "root",
            "type": "Container",
            "props": [],
            "children": [
                {"id": "", "type": 3},
                "not-a-component",
                {"id": "root", "type": "Text", "text": 5},
                {"id": "x", "type": "Card", "children": {"bad": True}},
            ],
        },
        "data": [],
    }
    assert _codes(validate(schema)) == [
        (ErrorCode.INVALID_TYPE, "root.props"),
        (ErrorCode.INVALID_VALUE, "root.children[0].id"),
        (ErrorCode.INVALID_TYPE, "root.children[0].type"),
        (ErrorCode.INVALID_TYPE, "root.children[1]"),
        (ErrorCode.INVALID_VALUE, "root.children[2].id"),
        (ErrorCode.INVALID_TYPE, "root.children[2].text"),
        (ErrorCode.INVALID_TYPE, "root.children[3].children"),
        (ErrorCode.INVALID_TYPE, "data"),
    ]


def test_null_optional_fields_are_treated_as_absent():
    schema = valid_schema(props=None, children=None, text=None)
    schema["data"] = None
    assert validate(schema).valid


def test_validation_is_deterministic():
    schema = {"root": {"children": [{"type": "X"}, {"id": 1}]}}
    catalog = default_catalog()
    first = validate(schema, catalog)
    second = validate(schema, catalog)
    assert first.model_dump() == second.model_dump()


def test_valid_flag_matches_errors():
    result = validate({"root": {}})
    assert result.valid == (len(result.errors) == 0)
    assert result.model_dump()["valid"] is False
    # round-trips despite the derived field
    assert ValidationResult.model_validate(result.model_dump()) == result


# -------------------------
# Catalog checks
# -------------------------

def test_unknown_component_with_did_you_mean_suggestion():
    schema = valid_schema(children=[{"id": "b", "type": "Buton"}])
    result = validate(schema, default_catalog())
    assert _codes(result) == [(ErrorCode.UNKNOWN_COMPONENT, "root.children[0].type")]
    assert "Button" in result.errors[0].suggestion


def test_aliases_and_case_insensitive_names_are_accepted():
    schema = valid_schema(
        type="div",
        children=[
            {"id": "a", "type": "btn"},
            {"id": "b", "type": "button"},
            {"id": "c", "type": "h1", "text": "Title"},
        ],
    )
    assert validate(schema, default_catalog()).valid


def test_non_strict_types_downgrade_unknown_component_to_warning():
    schema = valid_schema(children=[{"id": "b", "type": "Carousel"}])
    result = SchemaValidator(default_catalog(), strict_types=False).validate(schema)
    assert result.valid
    assert [w.code for w in result.warnings] == [ErrorCode.UNKNOWN_COMPONENT]


def test_prop_schema_checks():
    schema = valid_schema(
        children=[
            {"id": "img", "type": "Image", "props": {"alt": "logo"}},
            {"id": "btn", "type": "Button", "props": {"variant": "huge", "disabled": "no"}},
            {"id": "sel", "type": "Select", "props": {"options": None}},
        ]
    )
    result = validate(schema, default_catalog())
    assert _codes(result) == [
        (ErrorCode.MISSING_FIELD, "root.children[0].props.src"),
        (ErrorCode.INVALID_VALUE, "root.children[1].props.variant"),
        (ErrorCode.INVALID_TYPE, "root.children[1].props.disabled"),
        (ErrorCode.MISSING_FIELD, "root.children[2].props.options"),
    ]
    assert "primary" in result.errors[1].suggestion


def test_number_prop_rejects_booleans():
    catalog = StaticCatalog(
        [ComponentDefinition(name="Spacer", props_schema={"size": PropSchema(type="number", required=True)})],
        aliases={},
    )
    ok = {"version": "1.0", "root": {"id": "s", "type": "Spacer", "props": {"size": 4}}}
    bad = {"version": "1.0", "root": {"id": "s", "type": "Spacer", "props": {"size": True}}}
    assert validate(ok, catalog).valid
    assert _codes(validate(bad, catalog)) == [(ErrorCode.INVALID_TYPE, "root.props.size")]


def test_unknown_type_without_close_match_lists_valid_types():
    catalog = default_catalog()
    result = validate(valid_schema(type="Zzzzzz"), catalog)
    assert result.errors[0].suggestion.startswith("Valid types: ")


def test_similar_types_is_case_insensitive():
    assert similar_types("BUTON", ["Button", "Text"]) == ["Button"]
