import pytest

from dyntables import catalog
from dyntables.errors import ValidationError


def test_every_data_type_has_view_types_and_migration_targets():
    for data_type in catalog.data_types():
        assert catalog.allowed_view_types(data_type)
        assert data_type not in catalog.migration_targets(data_type)


def test_every_view_type_has_editors():
    assert catalog.view_types() == {"text", "number", "boolean", "datetime", "file", "relation", "json", "select"}
    for view_type in catalog.view_types():
        assert catalog.allowed_editors(view_type)


def test_unknown_names_raise():
    with pytest.raises(ValidationError):
        catalog.allowed_view_types("money")
    with pytest.raises(ValidationError):
        catalog.allowed_editors("map")
    with pytest.raises(ValidationError):
        catalog.migration_targets("money")


def test_validate_column_triple():
    catalog.validate_column_triple("decimal", "number", "input")
    with pytest.raises(ValidationError):
        catalog.validate_column_triple("decimal", "text", "input")
    with pytest.raises(ValidationError):
        catalog.validate_column_triple("text", "text", "checkbox")


def test_facet_kind():
    assert catalog.facet_kind("varchar") == "text"
    assert catalog.facet_kind("double") == "number"
    assert catalog.facet_kind("boolean") == "boolean"
    assert catalog.facet_kind("timestamptz") == "date"
    assert catalog.facet_kind("jsonb") is None
    assert catalog.facet_kind("uuid", is_relation=True) == "relation"
