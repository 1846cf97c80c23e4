import math

import pytest

from conftest import assert_topology_consistent, make_node, make_pipe
from wdn.core.engine.splice import SpliceEngine
from wdn.core.models.feature import Geometry
from wdn.core.models.network import FeatureStore


def test_insert_node_on_pipe_splits_at_projection(splice):
    store = splice.store
    res = splice.insert_node_on_pipe("P-100", (40.0, 5.0))

    assert res.split
    assert res.removed_pipe_id == "P-100"
    assert "P-100" not in store

    node = store[res.node_id]
    assert node.type == "junction"
    assert node.coordinate == pytest.approx((40.0, 0.0))
    assert set(node.connected_links) == set(res.pipe_ids)

    p1, p2 = (store[pid] for pid in res.pipe_ids)
    assert p1.endpoints == ("J-100", res.node_id)
    assert p2.endpoints == (res.node_id, "J-101")
    assert p1.get("length") == pytest.approx(40.0)
    assert p2.get("length") == pytest.approx(60.0)

    assert store["J-100"].connected_links == (p1.id,)
    assert store["J-101"].connected_links == (p2.id,)
    assert_topology_consistent(store)


def test_split_reconstructs_original_vertices():
    store = FeatureStore([
        make_node("J-100", (0, 0), links=("P-100",)),
        make_node("J-101", (60, 0), links=("P-100",)),
        make_pipe("P-100", [(0, 0), (20, 10), (40, -10), (60, 0)], "J-100", "J-101"),
    ])
    original = store["P-100"].coordinates
    total = sum(math.dist(a, b) for a, b in zip(original, original[1:]))

    res = SpliceEngine(store).insert_node_on_pipe("P-100", (30.0, 0.0))
    p1, p2 = (store[pid] for pid in res.pipe_ids)

    # minus the shared split point, the halves rebuild the original vertex list
    rebuilt = p1.coordinates[:-1] + p2.coordinates[1:]
    assert rebuilt == original
    assert p1.get("length") + p2.get("length") == pytest.approx(total)


def test_split_inherits_non_geometric_properties(splice):
    splice.store.update_feature("P-100", {"diameter": 250.0, "material": "HDPE"})
    res = splice.insert_node_on_pipe("P-100", (25.0, 0.0))
    for pid in res.pipe_ids:
        pipe = splice.store[pid]
        assert pipe.get("diameter") == 250.0
        assert pipe.get("material") == "HDPE"
        assert pipe.get("label") == f"Pipe-{pid}"


def test_insert_node_falls_back_to_standalone(splice):
    res = splice.insert_node_on_pipe("P-100", (100.02, 3.0), "tank")
    assert not res.split
    assert res.pipe_ids == ()
    assert splice.store[res.node_id].coordinate == (100.02, 3.0)
    assert splice.store[res.node_id].connected_links == ()
    assert "P-100" in splice.store


def test_insert_node_on_unknown_pipe_falls_back(splice):
    res = splice.insert_node_on_pipe("P-404", (1.0, 1.0))
    assert not res.split
    assert res.node_id in splice.store


def test_insert_link_on_pipe_midpoint(splice):
    store = splice.store
    res = splice.insert_link_on_pipe("P-100", (50.0, 0.0), "pump")
    assert res is not None

    pump = store[res.link_id]
    sj = store[res.start_junction_id]
    ej = store[res.end_junction_id]
    half = splice.config.half_link_length_m

    assert pump.type == "pump"
    assert pump.coordinate == pytest.approx((50.0, 0.0))
    assert sj.coordinate == pytest.approx((50.0 - half, 0.0))
    assert ej.coordinate == pytest.approx((50.0 + half, 0.0))
    assert math.dist(sj.coordinate, ej.coordinate) == pytest.approx(splice.config.link_length_m)

    p1, p2 = (store[pid] for pid in res.pipe_ids)
    assert p1.endpoints == ("J-100", sj.id)
    assert p2.endpoints == (ej.id, "J-101")
    assert "P-100" not in store
    assert set(sj.connected_links) == {p1.id, pump.id}
    assert set(ej.connected_links) == {p2.id, pump.id}

    visual = store.visual_link_for(pump.id)
    assert visual is not None and visual.kind == "visual_link"
    assert visual.coordinates == (sj.coordinate, ej.coordinate)
    assert_topology_consistent(store)


def test_insert_link_slides_away_from_segment_end(splice):
    res = splice.insert_link_on_pipe("P-100", (0.2, 0.0), "valve")
    assert res is not None
    margin = splice.config.half_link_length_m + splice.config.vertex_tolerance_m
    assert splice.store[res.link_id].coordinate == pytest.approx((margin, 0.0))
    assert splice.store[res.start_junction_id].coordinate[0] > 0.0
    assert_topology_consistent(splice.store)


def test_insert_link_on_short_segment_returns_none():
    store = FeatureStore([
        make_node("J-100", (0, 0), links=("P-100",)),
        make_node("J-101", (1, 0), links=("P-100",)),
        make_pipe("P-100", [(0, 0), (1, 0)], "J-100", "J-101"),
    ])
    before = store.snapshot()
    assert SpliceEngine(store).insert_link_on_pipe("P-100", (0.5, 0.0), "pump") is None
    assert store.snapshot() == before


def test_insert_link_rejects_unknown_type(splice):
    with pytest.raises(ValueError):
        splice.insert_link_on_pipe("P-100", (50.0, 0.0), "hydrant")


def test_split_pipe_at_existing_node(splice):
    store = splice.store
    store.add_feature(make_node("J-200", (30.0, 1.0), links=("P-200",)))
    store.add_feature(make_node("J-300", (30.0, 20.0), links=("P-200",)))
    store.add_feature(make_pipe("P-200", [(30.0, 1.0), (30.0, 20.0)], "J-200", "J-300"))

    new_ids = splice.split_pipe_at_node("P-100", "J-200")
    assert new_ids is not None
    assert store["J-200"].coordinate == pytest.approx((30.0, 0.0))
    # the node's own pipe followed it
    assert store["P-200"].coordinates[0] == pytest.approx((30.0, 0.0))
    assert set(store["J-200"].connected_links) == {"P-200", *new_ids}
    assert_topology_consistent(store)


def test_split_pipe_at_own_endpoint_is_rejected(splice):
    assert splice.split_pipe_at_node("P-100", "J-100") is None


def test_place_link_creates_flanking_junctions(empty_store):
    engine = SpliceEngine(empty_store)
    res = engine.place_link("valve", (10.0, 10.0), angle=math.pi / 2)
    assert empty_store[res.start_junction_id].coordinate == pytest.approx((10.0, 9.5))
    assert empty_store[res.end_junction_id].coordinate == pytest.approx((10.0, 10.5))
    assert empty_store[res.link_id].coordinate == pytest.approx((10.0, 10.0))
    assert res.pipe_ids == ()
    assert_topology_consistent(empty_store)


def test_create_pipe_pins_endpoints(splice):
    pipe = splice.create_pipe([(0.3, 0.2), (50, 50), (99, 1)], "J-100", "J-101")
    assert pipe.coordinates[0] == (0.0, 0.0)
    assert pipe.coordinates[-1] == (100.0, 0.0)
    assert pipe.id in splice.store["J-100"].connected_links
    with pytest.raises(ValueError):
        splice.create_pipe([(0, 0), (1, 1)], "J-100", "J-999")


def test_link_on_shared_vertex_uses_longer_neighbour_segment(splice):
    store = splice.store
    store.set_geometry("P-100", Geometry.line([(0.0, 0.0), (0.9, 0.0), (100.0, 0.0)]))

    # equidistant from both segments; the first one is too short for the link
    res = splice.insert_link_on_pipe("P-100", (0.9, 5.0), "pump")
    assert res is not None
    assert store[res.start_junction_id].coordinate == pytest.approx((1.0, 0.0))
    assert store[res.end_junction_id].coordinate == pytest.approx((2.0, 0.0))

    first = store[res.pipe_ids[0]].coordinates
    assert first[:2] == ((0.0, 0.0), (0.9, 0.0))
    assert first[-1] == pytest.approx((1.0, 0.0))
    assert_topology_consistent(store)
