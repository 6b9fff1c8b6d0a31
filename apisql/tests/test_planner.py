"""Tests for column schemas, endpoint matching, constraint resolution and targets."""
from pathlib import Path

import pytest
import sqlglot
import sqlglot.expressions as exp

from apisql.catalog.loader import parse_document
from apisql.catalog.models import ApiCatalog, Endpoint, Entity, Parameter, PropertyDecl
from apisql.errors import (
    ConfigurationError,
    ConstraintMappingError,
    QueryShapeError,
    SchemaResolutionError,
)
from apisql.planner.constraints import encode_literal, resolve_constraint
from apisql.planner.matcher import match_path, parameter_alias
from apisql.planner.models import ResolvedQuery
from apisql.planner.request_builder import base_url, build_target
from apisql.schema.columns import build_column_schema
from apisql.schema.field_kind import FieldKind

FIXTURES = Path(__file__).parent / "fixtures"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _petstore() -> ApiCatalog:
    return parse_document((FIXTURES / "petstore.yaml").read_bytes())


def _where(sql_predicate: str) -> exp.Expression:
    return sqlglot.parse_one(f"SELECT * FROM t WHERE {sql_predicate}", read="duckdb") \
        .args["where"].this


def _resolve(catalog: ApiCatalog, entity: str, predicate: str) -> ResolvedQuery:
    columns = build_column_schema(catalog.entity(entity), catalog)
    return resolve_constraint(_where(predicate), entity, columns, catalog)


# ---------------------------------------------------------------------------
# Column schema
# ---------------------------------------------------------------------------

class TestColumnSchema:
    def test_order_is_sorted(self):
        catalog = _petstore()
        columns = build_column_schema(catalog.entity("Pet"), catalog)
        assert columns.order == ("category", "id", "name", "photoUrls", "status", "tags")

    def test_kinds_follow_order(self):
        catalog = _petstore()
        columns = build_column_schema(catalog.entity("Pet"), catalog)
        assert dict(columns.pairs()) == {
            "category": FieldKind.OBJECT,
            "id": FieldKind.INTEGER,
            "name": FieldKind.STRING,
            "photoUrls": FieldKind.ARRAY,
            "status": FieldKind.STRING,
            "tags": FieldKind.ARRAY,
        }

    def test_index_of(self):
        catalog = _petstore()
        columns = build_column_schema(catalog.entity("Pet"), catalog)
        assert columns.index_of("id") == 1
        assert columns.index_of("PHOTOURLS") == 3
        assert columns.index_of("missing") == -1

    def test_unknown_type_names_type_and_column(self):
        catalog = ApiCatalog(entities={
            "A": Entity(name="A", properties={"uid": PropertyDecl(type="uuid")}),
        })
        with pytest.raises(SchemaResolutionError,
                           match="Found unknown type `uuid` for column `uid`"):
            build_column_schema(catalog.entity("A"), catalog)

    def test_unresolved_reference(self):
        catalog = ApiCatalog(entities={
            "A": Entity(name="A", properties={
                "b": PropertyDecl(ref="#/components/schemas/Missing"),
            }),
        })
        with pytest.raises(SchemaResolutionError, match="Unresolved reference"):
            build_column_schema(catalog.entity("A"), catalog)

    def test_foreign_reference_form(self):
        catalog = ApiCatalog(entities={
            "A": Entity(name="A", properties={"b": PropertyDecl(ref="other.yaml#/B")}),
        })
        with pytest.raises(SchemaResolutionError, match="recognised reference"):
            build_column_schema(catalog.entity("A"), catalog)

    def test_reference_to_reference(self):
        catalog = ApiCatalog(entities={
            "A": Entity(name="A", properties={
                "b": PropertyDecl(ref="#/components/schemas/B"),
            }),
            "B": Entity(name="B", ref="#/components/schemas/C"),
            "C": Entity(name="C", type="object"),
        })
        with pytest.raises(SchemaResolutionError, match="another reference"):
            build_column_schema(catalog.entity("A"), catalog)

    def test_reference_to_primitive(self):
        catalog = ApiCatalog(entities={
            "A": Entity(name="A", properties={
                "b": PropertyDecl(ref="#/components/schemas/Code"),
            }),
            "Code": Entity(name="Code", type="string"),
        })
        columns = build_column_schema(catalog.entity("A"), catalog)
        assert columns.kinds == (FieldKind.STRING,)


# ---------------------------------------------------------------------------
# Endpoint matching
# ---------------------------------------------------------------------------

class TestEndpointMatcher:
    def test_alias_strips_entity_prefix(self):
        assert parameter_alias("petId", "Pet") == "id"
        assert parameter_alias("PetName", "pet") == "name"

    def test_alias_empty_without_prefix(self):
        assert parameter_alias("status", "Pet") == ""

    def test_alias_empty_when_parameter_is_entity_name(self):
        assert parameter_alias("pet", "Pet") == ""

    def test_id_matches_pet_id(self):
        catalog = _petstore()
        columns = build_column_schema(catalog.entity("Pet"), catalog)
        endpoint = match_path(catalog, "Pet", columns.order, columns.index_of("id"))
        assert endpoint.path == "/pet/{petId}"

    def test_name_does_not_match_pet_id(self):
        catalog = _petstore()
        columns = build_column_schema(catalog.entity("Pet"), catalog)
        assert match_path(catalog, "Pet", columns.order, columns.index_of("name")) is None

    def test_multi_parameter_endpoints_are_skipped(self):
        catalog = _petstore()
        columns = build_column_schema(catalog.entity("User"), catalog)
        endpoint = match_path(catalog, "User", columns.order, columns.index_of("username"))
        # /user/login also takes username but declares two parameters
        assert endpoint.path == "/user/{username}"

    def test_first_declared_endpoint_wins(self):
        catalog = ApiCatalog(
            servers=["http://x"],
            entities={"A": Entity(name="A", properties={"k": PropertyDecl(type="string")})},
            endpoints=[
                Endpoint(path="/first", parameters=[Parameter(name="k")]),
                Endpoint(path="/second/{k}", parameters=[Parameter(name="k")]),
            ],
        )
        assert match_path(catalog, "A", ("k",), 0).path == "/first"

    def test_endpoints_without_read_are_skipped(self):
        catalog = ApiCatalog(endpoints=[
            Endpoint(path="/w", has_read=False, parameters=[Parameter(name="k")]),
        ])
        assert match_path(catalog, "A", ("k",), 0) is None


# ---------------------------------------------------------------------------
# Literal encoding
# ---------------------------------------------------------------------------

class TestEncodeLiteral:
    def test_string_loses_one_quote_each_side(self):
        assert encode_literal(exp.Literal.string("str")) == "str"

    def test_number_text_unchanged(self):
        assert encode_literal(exp.Literal.number(109)) == "109"
        assert encode_literal(_where("x = 1.50").right) == "1.50"

    def test_negative_number(self):
        assert encode_literal(_where("x = -3").right) == "-3"

    def test_boolean(self):
        assert encode_literal(exp.Boolean(this=True)) == "true"

    def test_non_literal(self):
        assert encode_literal(exp.column("y")) is None
        assert encode_literal(exp.Null()) is None


# ---------------------------------------------------------------------------
# Constraint resolution
# ---------------------------------------------------------------------------

class TestConstraintResolver:
    def test_single_equality(self):
        resolved = _resolve(_petstore(), "Pet", "status = 'available'")
        assert resolved.endpoint.path == "/pet/findByStatus"
        assert resolved.column_name == "status"
        assert resolved.column_index == 4
        assert resolved.literal_value == "available"

    def test_conjunction_with_one_mappable_operand(self):
        resolved = _resolve(_petstore(), "Pet", "status = 'pending' AND name = 'Wayne'")
        assert resolved.column_name == "status"
        assert resolved.literal_value == "pending"

    def test_is_null_operand_is_skipped(self):
        resolved = _resolve(_petstore(), "Pet", "status = 'pending' AND name IS NULL")
        assert resolved.column_name == "status"

    def test_literal_on_left_does_not_match(self):
        with pytest.raises(ConstraintMappingError) as info:
            _resolve(_petstore(), "Pet", "'pending' = status")
        assert info.value.count == 0

    def test_literal_equals_literal_does_not_match(self):
        resolved = _resolve(_petstore(), "Pet", "1 = 1 AND id = 109")
        assert resolved.column_name == "id"

    def test_no_mapping(self):
        with pytest.raises(ConstraintMappingError, match="No filter maps to an API path"):
            _resolve(_petstore(), "Pet", "name = 'Wayne'")

    def test_two_mappings(self):
        with pytest.raises(ConstraintMappingError,
                           match="Need exactly one filter that maps to a path, have 2") as info:
            _resolve(_petstore(), "Pet", "status = 'pending' AND id = 1")
        assert info.value.count == 2

    def test_nested_and_is_flattened(self):
        with pytest.raises(ConstraintMappingError) as info:
            _resolve(_petstore(), "Pet", "(status = 'a' AND id = 1) AND tags = 'x'")
        assert info.value.count == 3

    def test_or_is_unsupported(self):
        with pytest.raises(QueryShapeError, match="single constraint or an AND"):
            _resolve(_petstore(), "Pet", "status = 'a' OR status = 'b'")

    def test_range_is_unsupported(self):
        with pytest.raises(QueryShapeError):
            _resolve(_petstore(), "Pet", "id > 3")

    def test_missing_predicate(self):
        catalog = _petstore()
        columns = build_column_schema(catalog.entity("Pet"), catalog)
        with pytest.raises(QueryShapeError, match="Where clause is required"):
            resolve_constraint(None, "Pet", columns, catalog)

    def test_parenthesised_equality(self):
        assert _resolve(_petstore(), "Pet", "(id = 109)").literal_value == "109"

    def test_qualified_column(self):
        assert _resolve(_petstore(), "Pet", "p.id = 109").column_name == "id"


# ---------------------------------------------------------------------------
# Request building
# ---------------------------------------------------------------------------

class TestRequestBuilder:
    def test_path_placeholder_substitution(self):
        catalog = _petstore()
        resolved = _resolve(catalog, "Pet", "id = 109")
        assert build_target(catalog, resolved) == "https://petstore.test/v2/pet/109"

    def test_query_parameter_uses_column_name(self):
        catalog = _petstore()
        resolved = _resolve(catalog, "Pet", "status = 'available'")
        assert build_target(catalog, resolved) == \
            "https://petstore.test/v2/pet/findByStatus?status=available"

    def test_value_inserted_verbatim(self):
        catalog = _petstore()
        resolved = _resolve(catalog, "Pet", "status = 'on hold'")
        assert build_target(catalog, resolved).endswith("?status=on hold")

    def test_zero_servers(self):
        with pytest.raises(ConfigurationError, match="exactly one server, found 0"):
            base_url(ApiCatalog())

    def test_many_servers(self):
        with pytest.raises(ConfigurationError, match="found 2"):
            base_url(ApiCatalog(servers=["http://a", "http://b"]))
