from types import SimpleNamespace

import pytest

from aixm_ingestor.batching import BatchData
from aixm_ingestor.conversion import ValueType, default_registry
from aixm_ingestor.crawling import (NULL, MappingNode, ObjectNode, PathStep,
                                    crawl, decode_foreign_id, get, parse_path,
                                    split_body)
from aixm_ingestor.exceptions import ConfigurationError, ExtractionError

from conftest import href

RECORD = MappingNode(
    {
        "name": "Example Field",
        "ARP": [{"ElevatedPoint": {"pos": [-87.9, 41.97]}}],
        "servedCity": [{"City": {"name": "CHICAGO"}}, {"City": {"name": "ELMHURST"}}],
        "runways": [],
    }
)


def test_parse_path_reads_names_and_indexes():
    assert parse_path("servedCity[1]/City/name") == (
        PathStep("servedCity", 1),
        PathStep("City"),
        PathStep("name"),
    )


@pytest.mark.parametrize("path", ["", "a//b", "a[x]", "a[1", "1abc"])
def test_parse_path_rejects_malformed_paths(path):
    with pytest.raises(ConfigurationError):
        parse_path(path)


def test_crawl_unwraps_single_element_lists():
    assert crawl(RECORD, "ARP/ElevatedPoint/pos[1]").value() == 41.97


def test_crawl_selects_list_elements():
    assert crawl(RECORD, "servedCity[1]/City/name").value() == "ELMHURST"
    assert crawl(RECORD, "servedCity[5]/City/name") is NULL


def test_absent_steps_propagate_null():
    assert crawl(RECORD, "missing/deeper/still[3]/value") is NULL
    assert crawl(RECORD, "runways[0]/designator") is NULL
    assert crawl(NULL, "anything") is NULL


@pytest.mark.parametrize("value_type", list(ValueType))
def test_get_on_null_is_absent_for_every_type(value_type):
    assert get(crawl(RECORD, "missing/leaf"), value_type, default_registry()) is None


def test_get_converts_leaf_values():
    conversion = default_registry()
    assert get(crawl(RECORD, "ARP/ElevatedPoint/pos[0]"), ValueType.DOUBLE, conversion) == -87.9
    assert get(crawl(RECORD, "name"), ValueType.STRING, conversion) == "Example Field"


def test_unknown_accessor_raises_extraction_error():
    with pytest.raises(ExtractionError) as excinfo:
        crawl(RECORD, "name/first")
    assert excinfo.value.path == "name/first"

    with pytest.raises(ExtractionError):
        crawl(RECORD, "servedCity/City")


def test_object_nodes_distinguish_missing_from_none():
    data = ObjectNode(SimpleNamespace(name=None, position=SimpleNamespace(values=[1.0, 2.0])))
    assert crawl(data, "name") is NULL
    assert crawl(data, "position/values[1]").value() == 2.0
    with pytest.raises(ExtractionError):
        crawl(data, "designator")


def test_split_body_defaults_to_feature():
    assert split_body("Extension/landSize") == ("Extension", "landSize")
    assert split_body("Feature/name") == ("Feature", "name")
    assert split_body("associatedAirportHeliport") == ("Feature", "associatedAirportHeliport")


def test_decode_foreign_id_registers_placeholder(registry):
    batch = BatchData()
    node = MappingNode({"@href": href("Thing", "THING_0000001")})

    assert decode_foreign_id(node, registry.get("Thing"), batch) == "THING_0000001"
    assert batch.split()["things"].placeholders == ["THING_0000001"]


def test_decode_foreign_id_handles_encoded_locators(registry):
    encoded = "%23xpointer(//aixm:Thing%5B@gml:id%3D'THING_0000002'%5D)"
    assert decode_foreign_id(MappingNode({"href": encoded}), registry.get("Thing")) == "THING_0000002"


def test_decode_foreign_id_rejects_other_features(registry):
    batch = BatchData()
    node = MappingNode({"@href": href("Part", "PART_0000001")})

    assert decode_foreign_id(node, registry.get("Thing"), batch) is None
    assert decode_foreign_id(NULL, registry.get("Thing"), batch) is None
    assert not batch
