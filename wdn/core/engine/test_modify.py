import math

import pytest

from conftest import assert_topology_consistent, make_node, make_pipe
from wdn.core.engine.modify import ModifyEngine
from wdn.core.models.feature import Feature, Geometry


@pytest.fixture
def modify(two_node_store, splice, config):
    return ModifyEngine(two_node_store, splice, config.modify)


def test_drop_node_on_unrelated_pipe_splits_it(modify, two_node_store):
    store = two_node_store
    store.add_feature(make_node("J-200", (50.0, 30.0), links=("P-200",)))
    store.add_feature(make_node("J-300", (50.0, 60.0), links=("P-200",)))
    store.add_feature(make_pipe("P-200", [(50.0, 30.0), (50.0, 60.0)], "J-200", "J-300"))

    assert modify.begin_drag("J-200")
    out = modify.end_node_drag("J-200", (50.0, 0.5))

    assert out.accepted
    assert out.removed_pipe_id == "P-100"
    assert "P-100" not in store
    assert len(out.pipe_ids) == 2

    node = store["J-200"]
    assert node.coordinate == pytest.approx((50.0, 0.0))
    assert set(node.connected_links) == {"P-200", *out.pipe_ids}

    left, right = (store[pid] for pid in out.pipe_ids)
    assert left.endpoints == ("J-100", "J-200")
    assert right.endpoints == ("J-200", "J-101")
    assert left.coordinates[-1] == pytest.approx((50.0, 0.0))
    assert right.coordinates[0] == pytest.approx((50.0, 0.0))
    assert store["P-200"].coordinates[0] == pytest.approx((50.0, 0.0))
    assert_topology_consistent(store)


def test_drag_moves_connected_pipe_ends(modify, two_node_store):
    out = modify.end_node_drag("J-101", (100.0, 10.0))
    assert out.accepted and out.pipe_ids == ()
    pipe = two_node_store["P-100"]
    assert pipe.coordinates[-1] == (100.0, 10.0)
    assert pipe.get("length") == pytest.approx(math.hypot(100.0, 10.0))
    assert_topology_consistent(two_node_store)


def test_drag_far_from_pipes_does_not_split(modify, two_node_store):
    two_node_store.add_feature(make_node("J-200", (50.0, 30.0)))
    out = modify.end_node_drag("J-200", (50.0, 10.0))
    assert out.accepted and out.removed_pipe_id is None
    assert "P-100" in two_node_store


def test_pump_junction_drag_moves_link_system(modify, splice, two_node_store):
    res = splice.insert_link_on_pipe("P-100", (50.0, 0.0), "pump")
    out = modify.end_node_drag(res.start_junction_id, (49.5, 5.0))
    assert out.accepted

    store = two_node_store
    sj = store[res.start_junction_id]
    ej = store[res.end_junction_id]
    assert sj.coordinate == pytest.approx((49.5, 5.0))
    assert ej.coordinate == pytest.approx((50.5, 5.0))
    assert math.dist(sj.coordinate, ej.coordinate) == pytest.approx(splice.config.link_length_m)
    assert store[res.link_id].coordinate == pytest.approx((50.0, 5.0))
    visual = store.visual_link_for(res.link_id)
    assert visual.coordinates[0] == pytest.approx(sj.coordinate)
    assert visual.coordinates[-1] == pytest.approx(ej.coordinate)
    assert_topology_consistent(store)


def test_move_link_translates_junctions(modify, splice, two_node_store):
    res = splice.insert_link_on_pipe("P-100", (50.0, 0.0), "valve")
    out = modify.move_link(res.link_id, (50.0, -4.0))
    assert out.accepted
    assert two_node_store[res.start_junction_id].coordinate == pytest.approx((49.5, -4.0))
    assert two_node_store[res.end_junction_id].coordinate == pytest.approx((50.5, -4.0))
    assert_topology_consistent(two_node_store)


def test_reshape_keeps_endpoints_and_adjacency(modify, two_node_store):
    before = two_node_store["J-100"].connected_links
    out = modify.reshape_pipe("P-100", [(1.0, 1.0), (50.0, 20.0), (99.0, -1.0)])
    assert out.accepted
    pipe = two_node_store["P-100"]
    assert pipe.coordinates == ((0.0, 0.0), (50.0, 20.0), (100.0, 0.0))
    assert pipe.get("length") == pytest.approx(2 * math.hypot(50.0, 20.0))
    assert two_node_store["J-100"].connected_links == before


def test_add_and_delete_vertex(modify, two_node_store):
    assert modify.add_vertex("P-100", (30.0, 2.0)).accepted
    assert two_node_store["P-100"].coordinates == ((0.0, 0.0), (30.0, 0.0), (100.0, 0.0))
    assert not modify.add_vertex("P-100", (30.05, 0.0)).accepted

    assert not modify.delete_vertex("P-100", 0).accepted
    assert not modify.delete_vertex("P-100", 2).accepted
    assert modify.delete_vertex("P-100", 1).accepted
    assert len(two_node_store["P-100"].coordinates) == 2
    assert not modify.delete_vertex("P-100", 1).accepted


def test_transients_and_unknown_ids_rejected(modify, two_node_store):
    two_node_store.add_feature(Feature(
        id="PREVIEW-100", type=None, geometry=Geometry.line([(0, 0), (1, 1)]), kind="preview",
    ))
    assert not modify.begin_drag("PREVIEW-100")
    assert not modify.end_node_drag("PREVIEW-100", (5.0, 5.0)).accepted
    assert not modify.end_node_drag("J-999", (5.0, 5.0)).accepted
    assert not modify.move_link("P-100", (5.0, 5.0)).accepted
    assert not modify.reshape_pipe("J-100", [(0, 0), (1, 1)]).accepted


def test_drag_reports_distance_from_drag_start(modify, two_node_store):
    assert modify.begin_drag("J-101")
    out = modify.end_node_drag("J-101", (100.0, 10.0))
    assert out.message == "Moved J-101 10.00 m"
