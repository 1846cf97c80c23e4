import pytest

from conftest import make_node, make_pipe
from wdn.core.build.analytics import analyze_connectivity, analyze_store


def test_two_node_network(two_node_store):
    stats = analyze_store(two_node_store)
    assert stats.total_nodes == 2
    assert stats.total_pipes == 1
    assert stats.connected_components == 1
    assert stats.largest_component == 2
    assert stats.network_density == pytest.approx(1.0)
    assert stats.average_node_degree == pytest.approx(1.0)


def test_components_and_degree():
    features = [
        make_node("J-1", (0, 0), links=("P-1",)),
        make_node("J-2", (10, 0), links=("P-1", "P-2")),
        make_node("J-3", (20, 0), links=("P-2",)),
        make_node("J-4", (50, 50)),
        make_pipe("P-1", [(0, 0), (10, 0)], "J-1", "J-2"),
        make_pipe("P-2", [(10, 0), (20, 0)], "J-2", "J-3"),
    ]
    stats = analyze_connectivity(features)
    assert stats.connected_components == 2
    assert stats.largest_component == 3
    assert stats.network_density == pytest.approx(2 / 6)
    assert stats.average_node_degree == pytest.approx(4 / 4)


def test_pumps_count_as_links_not_pipes(splice):
    splice.insert_link_on_pipe("P-100", (50.0, 0.0), "pump")
    stats = analyze_store(splice.store)
    assert stats.total_pipes == 2
    assert stats.total_links == 3
    assert stats.total_nodes == 4
    assert stats.connected_components == 1


def test_empty_network(empty_store):
    stats = analyze_store(empty_store)
    assert stats.to_dict() == {
        "total_nodes": 0,
        "total_pipes": 0,
        "total_links": 0,
        "connected_components": 0,
        "largest_component": 0,
        "network_density": 0.0,
        "average_node_degree": 0.0,
    }
