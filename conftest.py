import os
import sys

import pytest

# ensure workspace root is on sys.path so the wdn namespace package imports
ROOT = os.path.abspath(os.path.dirname(__file__))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from wdn.core.build.config import EditorConfig
from wdn.core.engine.splice import SpliceEngine
from wdn.core.models.feature import Feature, Geometry
from wdn.core.models.network import FeatureStore


def make_node(fid, xy, node_type="junction", links=(), **props):
    props.setdefault("elevation", 100.0)
    return Feature(
        id=fid,
        type=node_type,
        geometry=Geometry.point(xy),
        properties=props,
        connected_links=tuple(links),
    )


def make_pipe(fid, coords, start, end, **props):
    props.setdefault("diameter", 100.0)
    props.setdefault("roughness", 130.0)
    props.setdefault("length", 0.0)
    return Feature(
        id=fid,
        type="pipe",
        geometry=Geometry.line(coords),
        properties=props,
        start_node_id=start,
        end_node_id=end,
    )


def assert_topology_consistent(store):
    """Every link resolves both ends, is listed by them, and pipes touch their nodes."""
    for link in store.links():
        for nid in link.endpoints:
            node = store.find_node(nid)
            assert node is not None, f"{link.id} references missing node {nid}"
            assert link.id in node.connected_links, f"{nid} does not list {link.id}"
        if link.is_pipe:
            start = store[link.start_node_id].coordinate
            end = store[link.end_node_id].coordinate
            assert link.coordinates[0] == pytest.approx(start)
            assert link.coordinates[-1] == pytest.approx(end)
    for node in store.nodes():
        for lid in node.connected_links:
            assert lid in store, f"{node.id} lists missing link {lid}"
            assert node.id in store[lid].endpoints


@pytest.fixture
def config():
    return EditorConfig()


@pytest.fixture
def empty_store():
    return FeatureStore()


@pytest.fixture
def two_node_store():
    """J-100 (0,0) and J-101 (100,0) joined by pipe P-100."""
    return FeatureStore([
        make_node("J-100", (0.0, 0.0), links=("P-100",)),
        make_node("J-101", (100.0, 0.0), links=("P-100",)),
        make_pipe("P-100", [(0.0, 0.0), (100.0, 0.0)], "J-100", "J-101", length=100.0),
    ])


@pytest.fixture
def splice(two_node_store, config):
    return SpliceEngine(two_node_store, config.splice)
