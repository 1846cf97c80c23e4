from conftest import assert_topology_consistent
from wdn.core.engine.delete import DeleteEngine


def test_cascade_info_for_node(two_node_store):
    info = DeleteEngine(two_node_store).cascade_info("J-100")
    assert info.will_cascade
    assert info.link_ids == ("P-100",)
    assert "1 connected link(s)" in info.message
    assert not DeleteEngine(two_node_store).cascade_info("P-100").will_cascade


def test_delete_node_cascades_to_links(two_node_store):
    out = DeleteEngine(two_node_store).delete_feature("J-100")
    assert out.accepted
    assert out.removed_ids == ("J-100", "P-100")
    assert "P-100" not in two_node_store
    assert two_node_store["J-101"].connected_links == ()
    assert_topology_consistent(two_node_store)


def test_delete_link_detaches_both_ends(two_node_store):
    out = DeleteEngine(two_node_store).delete_feature("P-100")
    assert out.removed_ids == ("P-100",)
    assert two_node_store["J-100"].connected_links == ()
    assert two_node_store["J-101"].connected_links == ()


def test_delete_pump_removes_visual_link(splice):
    store = splice.store
    res = splice.insert_link_on_pipe("P-100", (50.0, 0.0), "pump")
    out = DeleteEngine(store).delete_feature(res.link_id)
    assert out.accepted
    assert res.visual_link_id in out.removed_ids
    assert res.visual_link_id not in store
    assert res.link_id not in store[res.start_junction_id].connected_links
    assert_topology_consistent(store)


def test_delete_junction_next_to_pump(splice):
    store = splice.store
    res = splice.insert_link_on_pipe("P-100", (50.0, 0.0), "valve")
    DeleteEngine(store).delete_feature(res.start_junction_id)
    assert res.link_id not in store
    assert store.visual_link_for(res.link_id) is None
    assert store[res.end_junction_id].connected_links == (res.pipe_ids[1],)
    assert_topology_consistent(store)


def test_delete_features_skips_already_cascaded(two_node_store):
    out = DeleteEngine(two_node_store).delete_features(["J-100", "P-100", "J-101"])
    assert out.accepted
    assert set(out.removed_ids) == {"J-100", "P-100", "J-101"}
    assert len(two_node_store) == 0


def test_delete_unknown_or_transient(two_node_store, splice):
    engine = DeleteEngine(two_node_store)
    assert not engine.delete_feature("nope").accepted
    res = splice.place_link("pump", (10.0, 10.0))
    assert not engine.delete_feature(res.visual_link_id).accepted
