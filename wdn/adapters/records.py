from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from wdn.core.geometry.polyline import is_finite_coordinate, midpoint
from wdn.core.models.feature import (
    LINK_TYPES,
    NODE_TYPES,
    Coordinate,
    Feature,
    Geometry,
    as_coordinate,
)
from wdn.core.models.network import FeatureStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImportResult:
    nodes: int
    pipes: int
    point_links: int
    visual_links: int

    @property
    def total(self) -> int:
        return self.nodes + self.pipes + self.point_links


# ============================================================
# Export
# ============================================================

def _geometry_to_record(g: Geometry) -> Dict[str, Any]:
    if g.type == "Point":
        x, y = g.first
        return {"type": "Point", "coordinates": [x, y]}
    return {"type": "LineString", "coordinates": [[x, y] for x, y in g.coordinates]}


def feature_to_record(f: Feature) -> Dict[str, Any]:
    rec: Dict[str, Any] = {
        "id": f.id,
        "type": f.type,
        "geometry": _geometry_to_record(f.geometry) if f.geometry is not None else None,
        "properties": dict(f.properties),
    }
    if f.is_link:
        rec["start_node_id"] = f.start_node_id
        rec["end_node_id"] = f.end_node_id
    return rec


def export_records(store: FeatureStore) -> List[Dict[str, Any]]:
    """
    Plain records of every network feature, nodes first.
    Adjacency and visual links are not exported; import rebuilds them.
    """
    nodes = [feature_to_record(f) for f in store.nodes()]
    links = [feature_to_record(f) for f in store.links()]
    return nodes + links


# ============================================================
# Import
# ============================================================

def _record_geometry(rec: Mapping[str, Any], fid: str) -> Tuple[str, Tuple[Coordinate, ...]]:
    g = rec.get("geometry")
    if not g:
        raise ValueError(f"Feature {fid!r} has no geometry.")
    gtype = g.get("type")
    coords = g.get("coordinates")
    if coords is None:
        raise ValueError(f"Feature {fid!r} geometry has no coordinates.")

    if gtype == "Point":
        # tolerate [x, y] and [[x, y]]
        if len(coords) == 1 and not isinstance(coords[0], (int, float)):
            coords = coords[0]
        if not is_finite_coordinate(coords):
            raise ValueError(f"Feature {fid!r} has an invalid point: {coords!r}")
        return gtype, (as_coordinate(coords),)

    if gtype == "LineString":
        if len(coords) < 2 or not all(is_finite_coordinate(c) for c in coords):
            raise ValueError(f"Feature {fid!r} has an invalid polyline: {coords!r}")
        return gtype, tuple(as_coordinate(c) for c in coords)

    raise ValueError(f"Feature {fid!r} has unsupported geometry type: {gtype!r}")


def import_records(
    records: Iterable[Mapping[str, Any]],
    store: Optional[FeatureStore] = None,
    *,
    id_base: int = 100,
) -> Tuple[FeatureStore, ImportResult]:
    """
    Load plain records into a store (a new one unless given).

    Nodes are created before links; adjacency is rebuilt from link endpoints,
    pipe end vertices are pinned to their nodes, pump/valve symbols are
    re-centred between their junctions and their visual links regenerated.
    Counters are resynchronized so new ids never collide with imported ones.

    Raises ValueError (before any write) on duplicate ids, unknown types,
    missing geometry or unknown node references.
    """
    store = store if store is not None else FeatureStore(id_base=id_base)
    records = list(records)

    # --- Parse & check ---
    node_recs: List[Tuple[str, str, Coordinate, Dict[str, Any]]] = []
    link_recs: List[Tuple[str, str, Tuple[Coordinate, ...], Dict[str, Any], str, str]] = []
    seen: set[str] = set()

    for rec in records:
        fid = str(rec.get("id") or "").strip()
        if not fid:
            raise ValueError(f"Record without id: {rec!r}")
        if fid in seen or fid in store:
            raise ValueError(f"Duplicate feature id: {fid!r}")
        seen.add(fid)

        ftype = rec.get("type")
        props = dict(rec.get("properties") or {})
        gtype, coords = _record_geometry(rec, fid)

        if ftype in NODE_TYPES:
            if gtype != "Point":
                raise ValueError(f"Node {fid!r} must have Point geometry, got {gtype}")
            node_recs.append((fid, ftype, coords[0], props))
        elif ftype in LINK_TYPES:
            start = str(rec.get("start_node_id") or "").strip()
            end = str(rec.get("end_node_id") or "").strip()
            if ftype == "pipe" and gtype != "LineString":
                raise ValueError(f"Pipe {fid!r} must have LineString geometry, got {gtype}")
            link_recs.append((fid, ftype, coords, props, start, end))
        else:
            raise ValueError(f"Record {fid!r} has unknown type: {ftype!r}")

    node_xy: Dict[str, Coordinate] = {fid: xy for fid, _, xy, _ in node_recs}
    for fid, ftype, _, _, start, end in link_recs:
        for role, nid in (("start_node_id", start), ("end_node_id", end)):
            if nid not in node_xy and store.find_node(nid) is None:
                raise ValueError(f"{ftype} {fid!r} references unknown {role} {nid!r}")

    # --- Write: nodes, then links ---
    for fid, ftype, xy, props in node_recs:
        store.add_feature(Feature(id=fid, type=ftype, geometry=Geometry.point(xy), properties=props))  # type: ignore[arg-type]

    n_pipes = n_points = n_visual = 0
    for fid, ftype, coords, props, start, end in link_recs:
        a = store[start].coordinate
        b = store[end].coordinate
        if ftype == "pipe":
            pinned = (a,) + coords[1:-1] + (b,)
            store.add_feature(Feature(
                id=fid, type="pipe", geometry=None, properties=props,
                start_node_id=start, end_node_id=end,
            ))
            store.set_geometry(fid, Geometry.line(pinned))
            n_pipes += 1
        else:
            store.add_feature(Feature(
                id=fid, type=ftype, geometry=Geometry.point(midpoint(a, b)), properties=props,  # type: ignore[arg-type]
                start_node_id=start, end_node_id=end,
            ))
            n_points += 1

        store.update_node_connections(start, fid, "add")
        store.update_node_connections(end, fid, "add")

    store.sync_counters()

    for fid, ftype, _, _, start, end in link_recs:
        if ftype == "pipe":
            continue
        store.add_feature(Feature(
            id=store.generate_unique_id("visual_link"),
            type=None,
            geometry=Geometry.line([store[start].coordinate, store[end].coordinate]),
            kind="visual_link",
            properties={"link_type": ftype},
            parent_link_id=fid,
        ))
        n_visual += 1

    result = ImportResult(nodes=len(node_recs), pipes=n_pipes, point_links=n_points, visual_links=n_visual)
    logger.info(
        f"Imported {result.nodes} nodes, {result.pipes} pipes, {result.point_links} pumps/valves"
    )
    return store, result
