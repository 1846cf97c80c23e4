from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List, Optional

import pandas as pd

from wdn.core.build.config import EditorConfig
from wdn.core.build.validate import ValidationReport
from wdn.core.models.network import FeatureStore

VALIDATION_COLUMNS = ["level", "type", "message", "feature_ids", "hint"]


def validation_frame(report: ValidationReport) -> pd.DataFrame:
    """One row per issue, errors first."""
    rows = [{
        "level": it.level,
        "type": it.type,
        "message": it.message,
        "feature_ids": it.feature_id,
        "hint": it.hint or "",
    } for it in report.issues]
    return pd.DataFrame(rows, columns=VALIDATION_COLUMNS)


def export_validation_csv(report: ValidationReport, path_csv: str) -> None:
    validation_frame(report).to_csv(path_csv, index=False)


def export_validation_excel(
    report: ValidationReport,
    path_xlsx: str,
    sheet_name: str = "validation",
) -> None:
    with pd.ExcelWriter(path_xlsx, engine="openpyxl") as writer:
        validation_frame(report).to_excel(writer, sheet_name=sheet_name, index=False)


def _config_rows(config: EditorConfig) -> List[Dict[str, Any]]:
    # section-qualified keys, so fields shared by several sections read back unchanged
    flat: Dict[str, Any] = {}
    sections = {
        "drawing": config.drawing,
        "splice": config.splice,
        "modify": config.modify,
        "validation": config.validation,
    }
    for name, section in sections.items():
        flat.update({f"{name}.{k}": v for k, v in asdict(section).items()})
    flat["id_base"] = config.id_base
    flat["config_version"] = config.version
    return [{"key": k, "value": v} for k, v in flat.items()]


def export_network_excel(
    store: FeatureStore,
    path_xlsx: str,
    config: Optional[EditorConfig] = None,
) -> None:
    """
    Write the store in the workbook layout read by load_network_from_excel:
      nodes(node_id, type, x, y, ...), links(link_id, type, start_node, end_node, ...),
      vertices(link_id, seq, x, y) for interior pipe vertices, config(key, value).
    """
    node_rows = []
    for n in store.nodes():
        x, y = n.coordinate
        node_rows.append({"node_id": n.id, "type": n.type, "x": x, "y": y, **n.properties})

    link_rows = []
    vertex_rows = []
    for link in store.links():
        link_rows.append({
            "link_id": link.id,
            "type": link.type,
            "start_node": link.start_node_id,
            "end_node": link.end_node_id,
            **link.properties,
        })
        if link.is_pipe and link.geometry is not None:
            for seq, (x, y) in enumerate(link.coordinates[1:-1], start=1):
                vertex_rows.append({"link_id": link.id, "seq": seq, "x": x, "y": y})

    df_nodes = pd.DataFrame(node_rows, columns=None if node_rows else ["node_id", "type", "x", "y"])
    df_links = pd.DataFrame(link_rows, columns=None if link_rows else ["link_id", "type", "start_node", "end_node"])
    df_vertices = pd.DataFrame(vertex_rows, columns=["link_id", "seq", "x", "y"])
    df_config = pd.DataFrame(_config_rows(config or EditorConfig()), columns=["key", "value"])

    with pd.ExcelWriter(path_xlsx, engine="openpyxl") as writer:
        df_nodes.to_excel(writer, sheet_name="nodes", index=False)
        df_links.to_excel(writer, sheet_name="links", index=False)
        df_vertices.to_excel(writer, sheet_name="vertices", index=False)
        df_config.to_excel(writer, sheet_name="config", index=False)
