import pytest

from conftest import assert_topology_consistent
from wdn.adapters.records import export_records, import_records


def _records():
    return [
        {"id": "J-150", "type": "junction",
         "geometry": {"type": "Point", "coordinates": [0.0, 0.0]},
         "properties": {"elevation": 90.0}},
        {"id": "J-151", "type": "junction",
         "geometry": {"type": "Point", "coordinates": [[50.0, 0.0]]},
         "properties": {"elevation": 91.0}},
        {"id": "J-152", "type": "junction",
         "geometry": {"type": "Point", "coordinates": [51.0, 0.0]},
         "properties": {"elevation": 91.0}},
        {"id": "R-100", "type": "reservoir",
         "geometry": {"type": "Point", "coordinates": [100.0, 0.0]},
         "properties": {"head": 120.0}},
        {"id": "P-150", "type": "pipe",
         "geometry": {"type": "LineString", "coordinates": [[0.2, 0.1], [25.0, 5.0], [50.0, 0.0]]},
         "properties": {"diameter": 150.0, "roughness": 120.0},
         "start_node_id": "J-150", "end_node_id": "J-151"},
        {"id": "PU-120", "type": "pump",
         "geometry": {"type": "Point", "coordinates": [0.0, 0.0]},
         "properties": {"capacity": 20.0, "head_gain": 30.0},
         "start_node_id": "J-151", "end_node_id": "J-152"},
        {"id": "P-151", "type": "pipe",
         "geometry": {"type": "LineString", "coordinates": [[51.0, 0.0], [100.0, 0.0]]},
         "properties": {"diameter": 150.0, "roughness": 120.0},
         "start_node_id": "J-152", "end_node_id": "R-100"},
    ]


def test_import_rebuilds_topology():
    store, result = import_records(_records())
    assert (result.nodes, result.pipes, result.point_links, result.visual_links) == (4, 2, 1, 1)
    assert result.total == 7

    assert set(store["J-151"].connected_links) == {"P-150", "PU-120"}
    assert store["R-100"].connected_links == ("P-151",)
    assert_topology_consistent(store)


def test_pipe_ends_pinned_and_pump_recentred():
    store, _ = import_records(_records())
    pipe = store["P-150"]
    assert pipe.coordinates[0] == (0.0, 0.0)
    assert pipe.coordinates[1] == (25.0, 5.0)
    assert pipe.get("length") > 50.0

    pump = store["PU-120"]
    assert pump.coordinate == pytest.approx((50.5, 0.0))
    visual = store.visual_link_for("PU-120")
    assert visual is not None
    assert visual.get("link_type") == "pump"
    assert visual.coordinates == ((50.0, 0.0), (51.0, 0.0))


def test_counters_continue_after_imported_ids():
    store, _ = import_records(_records())
    assert store.generate_unique_id("junction") == "J-153"
    assert store.generate_unique_id("pipe") == "P-152"
    assert store.generate_unique_id("pump") == "PU-121"
    assert store.generate_unique_id("valve") == "V-100"


def test_export_then_import_reproduces_network():
    store, _ = import_records(_records())
    records = export_records(store)

    assert [r["id"] for r in records[:4]] == ["J-150", "J-151", "J-152", "R-100"]
    assert all(r["type"] is not None for r in records)
    assert records[0]["geometry"] == {"type": "Point", "coordinates": [0.0, 0.0]}

    again, result = import_records(records)
    assert result.total == 7
    for f in store.network_features():
        g = again[f.id]
        assert g.type == f.type
        assert g.coordinates == f.coordinates
        assert set(g.connected_links) == set(f.connected_links)
        assert dict(g.properties) == dict(f.properties)


@pytest.mark.parametrize(
    "patch, match",
    [
        ({"id": "J-150"}, "Duplicate"),
        ({"type": "hydrant"}, "unknown type"),
        ({"geometry": None}, "no geometry"),
        ({"geometry": {"type": "Point", "coordinates": [float("nan"), 1.0]}}, "invalid point"),
        ({"geometry": {"type": "Polygon", "coordinates": []}}, "unsupported geometry"),
    ],
)
def test_bad_records_raise_before_any_write(patch, match, empty_store):
    records = _records()
    extra = {"id": "J-999", "type": "junction",
             "geometry": {"type": "Point", "coordinates": [5.0, 5.0]}, "properties": {}}
    extra.update(patch)
    with pytest.raises(ValueError, match=match):
        import_records(records + [extra], empty_store)
    assert len(empty_store) == 0


def test_unknown_node_reference(empty_store):
    records = _records()
    records[-1]["end_node_id"] = "R-999"
    with pytest.raises(ValueError, match="unknown end_node_id"):
        import_records(records, empty_store)
    assert len(empty_store) == 0


def test_import_into_existing_store_connects_to_its_nodes(two_node_store):
    records = [
        {"id": "J-300", "type": "junction",
         "geometry": {"type": "Point", "coordinates": [100.0, 50.0]}, "properties": {}},
        {"id": "P-300", "type": "pipe",
         "geometry": {"type": "LineString", "coordinates": [[100.0, 0.0], [100.0, 50.0]]},
         "properties": {}, "start_node_id": "J-101", "end_node_id": "J-300"},
    ]
    _, result = import_records(records, two_node_store)
    assert result.total == 2
    assert set(two_node_store["J-101"].connected_links) == {"P-100", "P-300"}
    assert_topology_consistent(two_node_store)
