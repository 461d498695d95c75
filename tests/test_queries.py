import pytest

from aixm_ingestor.exceptions import ConfigurationError
from aixm_ingestor.queries import (AndQuery, Order, OrQuery, QueryOperation,
                                   Sort, compile_query, compile_sort,
                                   where_equals, where_greater_than,
                                   where_greater_than_equals, where_less_than,
                                   where_less_than_equals, where_like,
                                   where_not_equals)


def sql(clause):
    return str(clause.compile(compile_kwargs={"literal_binds": True}))


@pytest.mark.parametrize(
    "builder, operation, rendered",
    [
        (where_equals, QueryOperation.EQUALS, "things.weight = 2.5"),
        (where_not_equals, QueryOperation.NOT_EQUALS, "things.weight != 2.5"),
        (where_greater_than, QueryOperation.GREATER_THAN, "things.weight > 2.5"),
        (where_greater_than_equals, QueryOperation.GREATER_THAN_EQUALS, "things.weight >= 2.5"),
        (where_less_than, QueryOperation.LESS_THAN, "things.weight < 2.5"),
        (where_less_than_equals, QueryOperation.LESS_THAN_EQUALS, "things.weight <= 2.5"),
    ],
)
def test_comparisons_translate_to_columns(registry, builder, operation, rendered):
    query = builder("Thing", "weight", 2.5)
    assert query.operation is operation
    assert sql(compile_query(query, registry, "Thing")) == rendered


def test_attribute_names_resolve_to_column_names(registry):
    query = where_like("Part", "thingId", "THING_%")
    assert sql(compile_query(query, registry, "Part")) == "parts.thing_id LIKE 'THING_%'"


def test_equality_with_none_checks_for_null(registry):
    assert sql(compile_query(where_equals("Thing", "name", None), registry, "Thing")) == "things.name IS NULL"


def test_combinators_nest(registry):
    query = where_equals("Thing", "name", "A").or_(where_equals("Thing", "name", "B")).and_(
        where_greater_than("Thing", "pieces", 3)
    )
    assert isinstance(query, AndQuery)
    assert isinstance(query.queries[0], OrQuery)
    assert sql(compile_query(query, registry, "Thing")) == (
        "(things.name = 'A' OR things.name = 'B') AND things.pieces > 3"
    )


def test_operators_are_aliases(registry):
    query = where_equals("Thing", "name", "A") & where_equals("Thing", "pieces", 1) & where_less_than(
        "Thing", "weight", 9.0
    )
    assert isinstance(query, AndQuery)
    assert len(query.queries) == 3


def test_unknown_attribute_is_a_configuration_error(registry):
    with pytest.raises(ConfigurationError, match="no attribute 'colour'"):
        compile_query(where_equals("Thing", "colour", "red"), registry, "Thing")


def test_queries_must_target_the_selected_feature(registry):
    with pytest.raises(ConfigurationError):
        compile_query(where_equals("Part", "label", "x"), registry, "Thing")


def test_sort_keeps_key_order(registry):
    sort = Sort.descending("weight").then("name")
    assert sort.keys == [("weight", Order.DESCENDING), ("name", Order.ASCENDING)]
    assert [sql(clause) for clause in compile_sort(sort, registry, "Thing")] == [
        "things.weight DESC",
        "things.name ASC",
    ]


def test_combined_queries_extend_in_place():
    combined = where_equals("Thing", "name", "A") & where_equals("Thing", "pieces", 1)
    extended = combined & where_less_than("Thing", "weight", 9.0)
    either = where_equals("Thing", "name", "A") | where_equals("Thing", "name", "B")

    assert extended is combined
    assert len(combined.queries) == 3
    assert (either | where_equals("Thing", "name", "C")) is either
    assert len(either.queries) == 3
