from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from wdn.adapters.records import ImportResult, import_records
from wdn.core.build.config import EditorConfig
from wdn.core.models.feature import LINK_TYPES, NODE_TYPES
from wdn.core.models.network import FeatureStore

logger = logging.getLogger(__name__)


# -----------------------------
# Excel contract
# -----------------------------
SHEET_NODES = "nodes"
SHEET_LINKS = "links"
SHEET_VERTICES = "vertices"   # optional
SHEET_CONFIG = "config"       # optional

REQ_NODES = {"node_id", "type", "x", "y"}
REQ_LINKS = {"link_id", "type", "start_node", "end_node"}
REQ_VERTICES = {"link_id", "seq", "x", "y"}
REQ_CONFIG = {"key", "value"}

# Spreadsheet aliases for component types
TYPE_ALIASES = {
    "junction": "junction",
    "node": "junction",
    "tank": "tank",
    "reservoir": "reservoir",
    "pipe": "pipe",
    "pump": "pump",
    "valve": "valve",
}


def _norm_str(x: Any) -> str:
    if x is None or (isinstance(x, float) and pd.isna(x)):
        return ""
    return str(x).strip()


def _norm_lower(x: Any) -> str:
    return _norm_str(x).lower()


def _require_columns(df: pd.DataFrame, required: set[str], sheet: str) -> None:
    missing = sorted(list(required - set(df.columns)))
    if missing:
        raise ValueError(f"Sheet '{sheet}' is missing required columns: {missing}")


def _as_float(x: Any, field: str, sheet: str, row_hint: str) -> float:
    try:
        if x is None or (isinstance(x, float) and pd.isna(x)) or (isinstance(x, str) and x.strip() == ""):
            raise ValueError("empty")
        return float(x)
    except Exception as e:
        raise ValueError(f"Invalid numeric value for '{field}' in sheet '{sheet}' ({row_hint}): {x!r}") from e


def _maybe_float(x: Any) -> Optional[float]:
    try:
        if x is None or (isinstance(x, float) and pd.isna(x)) or (isinstance(x, str) and x.strip() == ""):
            return None
        return float(x)
    except Exception:
        return None


def _cell_value(x: Any) -> Any:
    """Property cell -> python value (None for blanks, floats for numerics)."""
    if x is None or (isinstance(x, float) and pd.isna(x)):
        return None
    if isinstance(x, str):
        s = x.strip()
        if s == "":
            return None
        num = _maybe_float(s)
        return num if num is not None else s
    if isinstance(x, bool):
        return x
    num = _maybe_float(x)
    return num if num is not None else x


def _extra_properties(r: pd.Series, reserved: set[str]) -> Dict[str, Any]:
    props: Dict[str, Any] = {}
    for col, val in r.items():
        key = str(col).strip()
        if key in reserved:
            continue
        v = _cell_value(val)
        if v is not None:
            props[key] = v
    return props


def _parse_type(x: Any, allowed: Tuple[str, ...], sheet: str, row_hint: str) -> str:
    t = TYPE_ALIASES.get(_norm_lower(x))
    if t not in allowed:
        raise ValueError(
            f"Invalid type in '{sheet}' ({row_hint}): {_norm_str(x)!r}. Allowed: {list(allowed)}"
        )
    return t


def _check_unique(ids: List[str], column: str, sheet: str) -> None:
    dups = sorted({x for x in ids if ids.count(x) > 1})
    if dups:
        raise ValueError(f"Duplicate {column} in sheet '{sheet}': {dups}")


def _read_config(df: pd.DataFrame) -> Dict[str, Any]:
    config: Dict[str, Any] = {}
    for _, r in df.iterrows():
        key = _norm_lower(r["key"])
        if not key:
            continue
        val = _cell_value(r["value"])
        if val is None:
            continue
        config[key] = val
    return config


def load_network_from_excel(path: str) -> Tuple[FeatureStore, EditorConfig, ImportResult]:
    """
    Reads 'nodes', 'links' and the optional 'vertices' / 'config' sheets and returns:
      - FeatureStore with adjacency and visual links rebuilt
      - EditorConfig from the 'config' sheet (defaults if absent)
      - ImportResult counts

    Pipes without rows in 'vertices' are straight lines between their nodes.
    Columns beyond the required ones become feature properties.
    """
    with pd.ExcelFile(path, engine="openpyxl") as xls:
        sheets = xls.sheet_names

    df_nodes = pd.read_excel(path, sheet_name=SHEET_NODES, engine="openpyxl")
    df_links = pd.read_excel(path, sheet_name=SHEET_LINKS, engine="openpyxl")
    _require_columns(df_nodes, REQ_NODES, SHEET_NODES)
    _require_columns(df_links, REQ_LINKS, SHEET_LINKS)

    df_vertices = None
    if SHEET_VERTICES in sheets:
        df_vertices = pd.read_excel(path, sheet_name=SHEET_VERTICES, engine="openpyxl")
        _require_columns(df_vertices, REQ_VERTICES, SHEET_VERTICES)

    # -----------------------------
    # Config
    # -----------------------------
    raw_config: Dict[str, Any] = {}
    if SHEET_CONFIG in sheets:
        df_config = pd.read_excel(path, sheet_name=SHEET_CONFIG, engine="openpyxl")
        _require_columns(df_config, REQ_CONFIG, SHEET_CONFIG)
        raw_config = _read_config(df_config)
    config = EditorConfig.from_dict(raw_config, resolution_m_per_px=_maybe_float(raw_config.get("resolution_m_per_px")))

    # -----------------------------
    # Nodes
    # -----------------------------
    node_ids = [_norm_str(x) for x in df_nodes["node_id"].tolist() if _norm_str(x)]
    _check_unique(node_ids, "node_id", SHEET_NODES)

    records: List[Dict[str, Any]] = []
    node_xy: Dict[str, Tuple[float, float]] = {}
    for _, r in df_nodes.iterrows():
        node_id = _norm_str(r["node_id"])
        if not node_id:
            continue  # allow blank rows
        hint = f"node_id={node_id}"
        ntype = _parse_type(r["type"], NODE_TYPES, SHEET_NODES, hint)
        x = _as_float(r["x"], "x", SHEET_NODES, hint)
        y = _as_float(r["y"], "y", SHEET_NODES, hint)
        node_xy[node_id] = (x, y)
        records.append({
            "id": node_id,
            "type": ntype,
            "geometry": {"type": "Point", "coordinates": [x, y]},
            "properties": _extra_properties(r, REQ_NODES),
        })

    # -----------------------------
    # Vertices
    # -----------------------------
    vertices_by_link: Dict[str, List[Tuple[float, float, float]]] = {}
    if df_vertices is not None:
        for _, r in df_vertices.iterrows():
            link_id = _norm_str(r["link_id"])
            if not link_id:
                continue
            hint = f"link_id={link_id}"
            seq = _as_float(r["seq"], "seq", SHEET_VERTICES, hint)
            x = _as_float(r["x"], "x", SHEET_VERTICES, hint)
            y = _as_float(r["y"], "y", SHEET_VERTICES, hint)
            vertices_by_link.setdefault(link_id, []).append((seq, x, y))

    # -----------------------------
    # Links
    # -----------------------------
    link_ids = [_norm_str(x) for x in df_links["link_id"].tolist() if _norm_str(x)]
    _check_unique(link_ids, "link_id", SHEET_LINKS)
    clash = sorted(set(link_ids) & set(node_ids))
    if clash:
        raise ValueError(f"Ids used by both nodes and links: {clash}")

    for _, r in df_links.iterrows():
        link_id = _norm_str(r["link_id"])
        if not link_id:
            continue
        hint = f"link_id={link_id}"
        ltype = _parse_type(r["type"], LINK_TYPES, SHEET_LINKS, hint)
        start = _norm_str(r["start_node"])
        end = _norm_str(r["end_node"])
        if start not in node_xy:
            raise ValueError(f"Unknown start_node '{start}' in '{SHEET_LINKS}' ({hint})")
        if end not in node_xy:
            raise ValueError(f"Unknown end_node '{end}' in '{SHEET_LINKS}' ({hint})")

        if ltype == "pipe":
            interior = [(x, y) for _, x, y in sorted(vertices_by_link.get(link_id, []))]
            geometry = {"type": "LineString", "coordinates": [node_xy[start], *interior, node_xy[end]]}
        else:
            (ax, ay), (bx, by) = node_xy[start], node_xy[end]
            geometry = {"type": "Point", "coordinates": [(ax + bx) / 2.0, (ay + by) / 2.0]}

        records.append({
            "id": link_id,
            "type": ltype,
            "geometry": geometry,
            "properties": _extra_properties(r, REQ_LINKS),
            "start_node_id": start,
            "end_node_id": end,
        })

    orphan_vertices = sorted(set(vertices_by_link) - set(link_ids))
    if orphan_vertices:
        logger.warning(f"Sheet '{SHEET_VERTICES}' has rows for unknown links: {orphan_vertices}")

    store, result = import_records(records, id_base=config.id_base)
    logger.info(f"Loaded {path}: {result.nodes} nodes, {result.pipes} pipes, {result.point_links} pumps/valves")
    return store, config, result
