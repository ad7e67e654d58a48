import yaml
from pathlib import Path
from typing import Any, Dict, Optional, List, Tuple
from dataclasses import dataclass, field
import fnmatch

from loguru import logger

CONFIG_FILE = Path("config.yml")

# Reference page sizes in PDF points (width, height), portrait.
PAGE_SIZES: Dict[str, Tuple[float, float]] = {
    "A4": (595.0, 842.0),
    "A3": (842.0, 1191.0),
    "LETTER": (612.0, 792.0),
    "LEGAL": (612.0, 1008.0),
}

DEFAULT_ORIENTATION_RULES: List[Dict[str, Any]] = [
    {"pattern": "*AOC*", "orientation": "Portrait", "rotation": 90, "priority": 10},
    {"pattern": "*DIFF*", "orientation": "Portrait", "rotation": 90, "priority": 10},
    {"pattern": "*FORM B*", "orientation": "Portrait", "rotation": 90, "priority": 10},
    {"pattern": "*Wage Reg*", "orientation": "Portrait", "rotation": 90, "priority": 10},
]


@dataclass
class RendererSettings:
    binary: Optional[str] = None
    timeout_seconds: int = 120
    export_filter: str = "calc_pdf_Export"


@dataclass
class LayoutSettings:
    page_size: str = "A4"
    margin: float = 20.0
    trim_whitespace: bool = False
    trim_padding: float = 10.0

    @property
    def reference_size(self) -> Tuple[float, float]:
        return PAGE_SIZES.get(self.page_size.upper(), PAGE_SIZES["A4"])


@dataclass
class InspectorSettings:
    preview_rows: int = 100
    preview_columns: int = 30
    scan_rows: int = 200
    scan_columns: int = 50
    skip_anomaly_sheets: List[str] = field(default_factory=lambda: ["*Credit Note*"])


@dataclass
class DirectorySettings:
    temp: str = "data/temp"
    output: str = "data/output"
    previews: str = "data/previews"
    corpus: str = "data/corpus"


@dataclass
class RetentionSettings:
    preview_max_age_hours: float = 2.0
    preview_pattern: str = "*.pdf"
    temp_max_age_hours: float = 24.0
    interval_minutes: float = 60.0
    retry_minutes: float = 5.0


@dataclass
class CompressionSettings:
    enabled: bool = True
    max_size_mb: float = 10.0


@dataclass
class UploadSettings:
    max_size_mb: float = 100.0
    extensions: List[str] = field(default_factory=lambda: [".xlsx", ".xls", ".xlsm"])


@dataclass
class PipelineSettings:
    renderer: RendererSettings = field(default_factory=RendererSettings)
    layout: LayoutSettings = field(default_factory=LayoutSettings)
    inspector: InspectorSettings = field(default_factory=InspectorSettings)
    directories: DirectorySettings = field(default_factory=DirectorySettings)
    retention: RetentionSettings = field(default_factory=RetentionSettings)
    compression: CompressionSettings = field(default_factory=CompressionSettings)
    upload: UploadSettings = field(default_factory=UploadSettings)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineSettings":
        """Create settings from a dictionary, section by section."""
        return cls(
            renderer=RendererSettings(**(data.get("renderer") or {})),
            layout=LayoutSettings(**(data.get("layout") or {})),
            inspector=InspectorSettings(**(data.get("inspector") or {})),
            directories=DirectorySettings(**(data.get("directories") or {})),
            retention=RetentionSettings(**(data.get("retention") or {})),
            compression=CompressionSettings(**(data.get("compression") or {})),
            upload=UploadSettings(**(data.get("upload") or {})),
        )


@dataclass
class OrientationOverride:
    orientation: str = "Portrait"
    rotation: int = 0


class OrientationPolicy:
    """
    Sheet-name driven orientation overrides.

    Rules are dicts with `pattern`, `orientation`, `rotation` and `priority`.
    Patterns are fnmatch-style and case-insensitive. All matching rules are
    applied in ascending priority, so higher priorities override lower ones.
    """

    def __init__(self, rules: Optional[List[Dict[str, Any]]] = None):
        self.rules = list(rules) if rules is not None else []

    def resolve(self, sheet_name: str) -> Optional[OrientationOverride]:
        name = sheet_name.lower()
        matching = [
            rule for rule in self.rules
            if fnmatch.fnmatchcase(name, str(rule.get("pattern", "*")).lower())
        ]
        if not matching:
            return None

        matching.sort(key=lambda r: r.get("priority", 0))
        merged: Dict[str, Any] = {}
        for rule in matching:
            merged.update({k: v for k, v in rule.items() if k in ("orientation", "rotation")})

        return OrientationOverride(
            orientation=str(merged.get("orientation", "Portrait")),
            rotation=int(merged.get("rotation", 0)),
        )

    def __len__(self) -> int:
        return len(self.rules)


def load_config(path: Path = CONFIG_FILE) -> Dict[str, Any]:
    """
    Load configuration from a YAML file.
    """
    if not path.exists():
        return {}

    try:
        with open(path, "r") as f:
            return yaml.safe_load(f) or {}
    except Exception as e:
        logger.warning(f"Failed to load configuration from {path}: {e}")
        return {}


def get_logging_config(path: Path = CONFIG_FILE) -> Dict[str, Any]:
    """
    Get logging configuration with defaults.
    """
    config = load_config(path)
    defaults = {
        "level": "INFO",
        "console": True,
        "file": {
            "enabled": True,
            "path": "logs/sheet2pdf_{time:YYYYMMDDHHmmss}.log",
            "rotation": "10 MB",
            "retention": "10 days"
        }
    }
    return _merge_dict(defaults, config.get("logging") or {})


def _merge_dict(base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries."""
    merged = base.copy()
    for key, value in update.items():
        if isinstance(value, dict) and key in merged and isinstance(merged[key], dict):
            merged[key] = _merge_dict(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_pipeline_settings(path: Path = CONFIG_FILE) -> PipelineSettings:
    config = load_config(path)
    return PipelineSettings.from_dict(config)


def get_orientation_policy(path: Path = CONFIG_FILE) -> OrientationPolicy:
    """
    Build the orientation policy from the `orientation_policy` rule list.

    A missing section yields the built-in rules; an explicit empty list
    disables overrides entirely.
    """
    config = load_config(path)
    rules = config.get("orientation_policy", DEFAULT_ORIENTATION_RULES)
    if not isinstance(rules, list):
        logger.warning("Config for orientation_policy is not a list of rules. Using defaults.")
        rules = DEFAULT_ORIENTATION_RULES
    return OrientationPolicy(rules)
