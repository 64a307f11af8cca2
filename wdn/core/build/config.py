# wdn/core/build/config.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from wdn.core.geometry.crs import GEOGRAPHIC_CRS, WORKING_CRS


# ============================================================
# EditorConfig (edición interactiva)
# ============================================================

@dataclass(frozen=True)
class EditorConfig:
    """
    Tolerances for interactive editing, in working-projection units.
    """
    device_gap: float = 1.0             # stub-to-stub distance for pumps/valves
    device_gap_fraction: float = 0.4    # max share of the containing segment
    hit_tolerance: float = 0.5          # "is this point on a node/link"
    length_decimals: int = 2

    @staticmethod
    def from_dict(cfg: Dict[str, Any]) -> "EditorConfig":
        gap = cfg.get("device_gap", cfg.get("device_gap_m", cfg.get("gap", 1.0)))
        frac = cfg.get("device_gap_fraction", cfg.get("gap_fraction", 0.4))
        tol = cfg.get("hit_tolerance", cfg.get("tolerance", cfg.get("pixel_tolerance", 0.5)))
        dec = cfg.get("length_decimals", cfg.get("decimals", 2))

        out = EditorConfig(
            device_gap=float(gap),
            device_gap_fraction=float(frac),
            hit_tolerance=float(tol),
            length_decimals=int(dec),
        )
        out.validate()
        return out

    def validate(self) -> None:
        if self.device_gap <= 0:
            raise ValueError(f"EditorConfig.device_gap debe ser > 0 (recibido {self.device_gap})")
        if not (0.0 < self.device_gap_fraction < 0.5):
            raise ValueError(f"EditorConfig.device_gap_fraction fuera de rango (0, 0.5): {self.device_gap_fraction}")
        if self.hit_tolerance < 0:
            raise ValueError(f"EditorConfig.hit_tolerance debe ser >= 0 (recibido {self.hit_tolerance})")
        if not (0 <= self.length_decimals <= 9):
            raise ValueError(f"EditorConfig.length_decimals fuera de rango: {self.length_decimals}")


# ============================================================
# CodecConfig (.inp)
# ============================================================

@dataclass(frozen=True)
class CodecConfig:
    """
    Formatting rules for the .inp writer/reader.
    """
    pattern_chunk_size: int = 6
    float_decimals: int = 6
    default_pattern_length: int = 24
    working_crs: str = WORKING_CRS
    column_width: int = 16

    @staticmethod
    def from_dict(cfg: Dict[str, Any]) -> "CodecConfig":
        chunk = cfg.get("pattern_chunk_size", cfg.get("pattern_chunk", 6))
        dec = cfg.get("float_decimals", cfg.get("inp_decimals", 6))
        plen = cfg.get("default_pattern_length", cfg.get("pattern_length", 24))
        crs = cfg.get("working_crs", cfg.get("map_projection", WORKING_CRS))
        width = cfg.get("column_width", 16)

        out = CodecConfig(
            pattern_chunk_size=int(chunk),
            float_decimals=int(dec),
            default_pattern_length=int(plen),
            working_crs=str(crs).strip(),
            column_width=int(width),
        )
        out.validate()
        return out

    def validate(self) -> None:
        if self.pattern_chunk_size <= 0:
            raise ValueError(f"CodecConfig.pattern_chunk_size debe ser > 0 (recibido {self.pattern_chunk_size})")
        if not (0 <= self.float_decimals <= 12):
            raise ValueError(f"CodecConfig.float_decimals fuera de rango: {self.float_decimals}")
        if self.default_pattern_length <= 0:
            raise ValueError(f"CodecConfig.default_pattern_length debe ser > 0 (recibido {self.default_pattern_length})")
        if not self.working_crs:
            raise ValueError("CodecConfig.working_crs vacío")
        if self.column_width < 1:
            raise ValueError(f"CodecConfig.column_width debe ser >= 1 (recibido {self.column_width})")


# ============================================================
# GisImportConfig
# ============================================================

@dataclass(frozen=True)
class GisImportConfig:
    """
    Defaults applied to pipes created from GIS line geometry.
    """
    default_diameter: float = 150.0
    default_roughness: float = 100.0
    snap_tolerance: float = 1.0         # [working units]
    source_crs: str = GEOGRAPHIC_CRS
    min_pipe_length: float = 0.1
    length_decimals: int = 2
    max_precheck_features: int = 2000

    @staticmethod
    def from_dict(cfg: Dict[str, Any]) -> "GisImportConfig":
        out = GisImportConfig(
            default_diameter=float(cfg.get("default_diameter", cfg.get("diameter", 150.0))),
            default_roughness=float(cfg.get("default_roughness", cfg.get("roughness", 100.0))),
            snap_tolerance=float(cfg.get("snap_tolerance", cfg.get("tolerance", 1.0))),
            source_crs=str(cfg.get("source_crs", cfg.get("crs", GEOGRAPHIC_CRS))).strip(),
            min_pipe_length=float(cfg.get("min_pipe_length", 0.1)),
            length_decimals=int(cfg.get("length_decimals", 2)),
            max_precheck_features=int(cfg.get("max_precheck_features", 2000)),
        )
        out.validate()
        return out

    def validate(self) -> None:
        if self.default_diameter <= 0:
            raise ValueError(f"GisImportConfig.default_diameter debe ser > 0 (recibido {self.default_diameter})")
        if self.default_roughness <= 0:
            raise ValueError(f"GisImportConfig.default_roughness debe ser > 0 (recibido {self.default_roughness})")
        if self.snap_tolerance < 0:
            raise ValueError(f"GisImportConfig.snap_tolerance debe ser >= 0 (recibido {self.snap_tolerance})")
        if not self.source_crs:
            raise ValueError("GisImportConfig.source_crs vacío")
        if self.min_pipe_length <= 0:
            raise ValueError(f"GisImportConfig.min_pipe_length debe ser > 0 (recibido {self.min_pipe_length})")
        if self.max_precheck_features <= 0:
            raise ValueError(f"GisImportConfig.max_precheck_features debe ser > 0 (recibido {self.max_precheck_features})")


# ============================================================
# EngineConfig (agregador)
# ============================================================

@dataclass(frozen=True)
class EngineConfig:
    editor: EditorConfig
    codec: CodecConfig
    gis: GisImportConfig
    version: int = 1

    @staticmethod
    def default() -> "EngineConfig":
        return EngineConfig(editor=EditorConfig(), codec=CodecConfig(), gis=GisImportConfig())

    @staticmethod
    def from_dict(cfg: Dict[str, Any]) -> "EngineConfig":
        out = EngineConfig(
            editor=EditorConfig.from_dict(cfg.get("editor", cfg)),
            codec=CodecConfig.from_dict(cfg.get("codec", cfg)),
            gis=GisImportConfig.from_dict(cfg.get("gis", cfg)),
            version=int(cfg.get("config_version", cfg.get("version", 1))),
        )
        out.validate()
        return out

    def validate(self) -> None:
        if self.version <= 0:
            raise ValueError(f"EngineConfig.version debe ser > 0 (recibido {self.version})")

        self.editor.validate()
        self.codec.validate()
        self.gis.validate()
