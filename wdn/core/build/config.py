# wdn/core/build/config.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

# All tolerances and thresholds are world units [m]. Screen-space values
# (pixels) are converted once in EditorConfig.from_dict.


def _get(cfg: Dict[str, Any], *keys: str, default: Any) -> Any:
    for k in keys:
        if k in cfg and cfg[k] is not None:
            return cfg[k]
    return default


def _scoped(cfg: Dict[str, Any], section: str) -> Dict[str, Any]:
    """Overlay "<section>.<key>" entries onto the flat keys."""
    prefix = f"{section}."
    out = {k: v for k, v in cfg.items() if "." not in k}
    out.update({k[len(prefix):]: v for k, v in cfg.items() if k.startswith(prefix)})
    return out


# ============================================================
# DrawingConfig (pipe chains)
# ============================================================

@dataclass(frozen=True)
class DrawingConfig:
    """
    Thresholds for click-driven pipe drawing.
    """
    snap_tolerance_m: float = 2.0          # node hit-test radius
    min_vertex_distance_m: float = 0.1     # intermediate vertex vs previous vertex
    min_pipe_length_m: float = 0.5         # node click distance and total chain length
    max_vertices: int = 100
    duplicate_vertex_m: float = 0.01       # consecutive vertices collapsed below this

    @staticmethod
    def from_dict(cfg: Dict[str, Any]) -> "DrawingConfig":
        cfg = _scoped(cfg, "drawing")
        out = DrawingConfig(
            snap_tolerance_m=float(_get(cfg, "snap_tolerance_m", "snap_tolerance", default=2.0)),
            min_vertex_distance_m=float(_get(cfg, "min_vertex_distance_m", "min_vertex_distance", default=0.1)),
            min_pipe_length_m=float(_get(cfg, "min_pipe_length_m", "min_pipe_length", default=0.5)),
            max_vertices=int(_get(cfg, "max_vertices", "vertex_cap", default=100)),
            duplicate_vertex_m=float(_get(cfg, "duplicate_vertex_m", default=0.01)),
        )
        out.validate()
        return out

    def validate(self) -> None:
        if self.snap_tolerance_m <= 0:
            raise ValueError(f"DrawingConfig.snap_tolerance_m must be > 0 (got {self.snap_tolerance_m})")
        if self.min_vertex_distance_m < 0:
            raise ValueError(f"DrawingConfig.min_vertex_distance_m must be >= 0 (got {self.min_vertex_distance_m})")
        if self.min_pipe_length_m <= 0:
            raise ValueError(f"DrawingConfig.min_pipe_length_m must be > 0 (got {self.min_pipe_length_m})")
        if self.max_vertices < 2:
            raise ValueError(f"DrawingConfig.max_vertices must be >= 2 (got {self.max_vertices})")
        if self.duplicate_vertex_m < 0:
            raise ValueError(f"DrawingConfig.duplicate_vertex_m must be >= 0 (got {self.duplicate_vertex_m})")


# ============================================================
# SpliceConfig (insert node/link on pipe)
# ============================================================

@dataclass(frozen=True)
class SpliceConfig:
    """
    Splitting tolerances and pump/valve span.
    """
    vertex_tolerance_m: float = 0.1    # split at an existing vertex when this close
    link_length_m: float = 1.0         # distance between the two junctions flanking a pump/valve
    snap_tolerance_m: float = 2.0      # pipe hit-test radius for side actions

    @property
    def half_link_length_m(self) -> float:
        return self.link_length_m / 2.0

    @staticmethod
    def from_dict(cfg: Dict[str, Any]) -> "SpliceConfig":
        cfg = _scoped(cfg, "splice")
        out = SpliceConfig(
            vertex_tolerance_m=float(_get(cfg, "vertex_tolerance_m", "vertex_tolerance", default=0.1)),
            link_length_m=float(_get(cfg, "link_length_m", "link_length", default=1.0)),
            snap_tolerance_m=float(_get(cfg, "snap_tolerance_m", "snap_tolerance", default=2.0)),
        )
        out.validate()
        return out

    def validate(self) -> None:
        if self.vertex_tolerance_m <= 0:
            raise ValueError(f"SpliceConfig.vertex_tolerance_m must be > 0 (got {self.vertex_tolerance_m})")
        if self.link_length_m <= 0:
            raise ValueError(f"SpliceConfig.link_length_m must be > 0 (got {self.link_length_m})")
        if self.snap_tolerance_m <= 0:
            raise ValueError(f"SpliceConfig.snap_tolerance_m must be > 0 (got {self.snap_tolerance_m})")


# ============================================================
# ModifyConfig (drag / reshape)
# ============================================================

@dataclass(frozen=True)
class ModifyConfig:
    drop_tolerance_m: float = 2.0      # dragged node dropped this close to a pipe splits it

    @staticmethod
    def from_dict(cfg: Dict[str, Any]) -> "ModifyConfig":
        cfg = _scoped(cfg, "modify")
        out = ModifyConfig(
            drop_tolerance_m=float(_get(cfg, "drop_tolerance_m", "snap_tolerance_m", "snap_tolerance", default=2.0)),
        )
        out.validate()
        return out

    def validate(self) -> None:
        if self.drop_tolerance_m <= 0:
            raise ValueError(f"ModifyConfig.drop_tolerance_m must be > 0 (got {self.drop_tolerance_m})")


# ============================================================
# ValidationConfig
# ============================================================

@dataclass(frozen=True)
class ValidationConfig:
    coincidence_tolerance: float = 1e-6   # node "at" a crossing / endpoint equality

    @staticmethod
    def from_dict(cfg: Dict[str, Any]) -> "ValidationConfig":
        cfg = _scoped(cfg, "validation")
        out = ValidationConfig(
            coincidence_tolerance=float(_get(cfg, "coincidence_tolerance", "validation_tolerance", default=1e-6)),
        )
        out.validate()
        return out

    def validate(self) -> None:
        if self.coincidence_tolerance <= 0:
            raise ValueError(f"ValidationConfig.coincidence_tolerance must be > 0 (got {self.coincidence_tolerance})")


# ============================================================
# EditorConfig (aggregator)
# ============================================================

@dataclass(frozen=True)
class EditorConfig:
    drawing: DrawingConfig = field(default_factory=DrawingConfig)
    splice: SpliceConfig = field(default_factory=SpliceConfig)
    modify: ModifyConfig = field(default_factory=ModifyConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    id_base: int = 100
    version: int = 1

    @staticmethod
    def from_dict(cfg: Dict[str, Any], *, resolution_m_per_px: Optional[float] = None) -> "EditorConfig":
        """
        Build from a flat key/value dict (Excel 'config' sheet, JSON, ...).
        Section-qualified keys ("drawing.snap_tolerance_m") take precedence
        over the plain key for that section only.

        A 'snap_tolerance_px' key is converted to metres with resolution_m_per_px
        and overrides every snap/drop tolerance, so hit-testing and length
        thresholds share one measurement space.
        """
        cfg = dict(cfg)
        px = cfg.get("snap_tolerance_px")
        if px is not None:
            if resolution_m_per_px is None:
                raise ValueError("snap_tolerance_px requires resolution_m_per_px.")
            if resolution_m_per_px <= 0:
                raise ValueError(f"resolution_m_per_px must be > 0 (got {resolution_m_per_px})")
            tol_m = float(px) * float(resolution_m_per_px)
            cfg["snap_tolerance_m"] = tol_m
            cfg["drop_tolerance_m"] = tol_m

        out = EditorConfig(
            drawing=DrawingConfig.from_dict(cfg),
            splice=SpliceConfig.from_dict(cfg),
            modify=ModifyConfig.from_dict(cfg),
            validation=ValidationConfig.from_dict(cfg),
            id_base=int(_get(cfg, "id_base", default=100)),
            version=int(_get(cfg, "config_version", "version", default=1)),
        )
        out.validate()
        return out

    def with_snap_tolerance(self, tol_m: float) -> "EditorConfig":
        out = replace(
            self,
            drawing=replace(self.drawing, snap_tolerance_m=float(tol_m)),
            splice=replace(self.splice, snap_tolerance_m=float(tol_m)),
            modify=replace(self.modify, drop_tolerance_m=float(tol_m)),
        )
        out.validate()
        return out

    def validate(self) -> None:
        if self.version <= 0:
            raise ValueError(f"EditorConfig.version must be > 0 (got {self.version})")
        if self.id_base < 0:
            raise ValueError(f"EditorConfig.id_base must be >= 0 (got {self.id_base})")

        self.drawing.validate()
        self.splice.validate()
        self.modify.validate()
        self.validation.validate()
