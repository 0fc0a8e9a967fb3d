"""Configuration and settings management."""
import json
import os
import logging
from pathlib import Path
from dataclasses import dataclass, asdict, field
from typing import Optional, Tuple, Mapping

from platformdirs import user_config_dir, user_data_dir

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration operations fail."""
    pass


DEFAULT_MIME_TYPES = ('image/jpeg', 'image/png', 'image/webp')

ENV_PREFIX = "SHEETSCAN_"


@dataclass
class ScanSettings:
    """Scan pipeline settings, built once at startup and passed to every component."""
    storage_root: str = field(default_factory=lambda: user_data_dir("SheetScan"))
    max_images_per_request: int = 50
    allowed_mime_types: Tuple[str, ...] = DEFAULT_MIME_TYPES
    image_quality: int = 85
    max_image_width: int = 2000
    max_image_height: int = 2800
    max_workers: int = 4
    # Boundary detection
    edge_threshold: int = 50
    min_coverage_ratio: float = 0.6
    crop_margin_ratio: float = 0.02
    crop_margin_max: int = 30
    # Page splitting
    three_page_aspect: float = 1.8
    two_page_aspect: float = 1.3
    split_margin_ratio: float = 0.02
    gap_brightness: int = 200
    gap_fill_ratio: float = 0.8
    gap_min_width_ratio: float = 0.05
    # Document assembly
    document_author: str = "University Scanner System"
    page_margin: float = 10.0
    # Compression
    gs_binary: str = "gs"
    compress_timeout: float = 15.0
    pdf_settings: str = "/ebook"

    def __post_init__(self):
        self.allowed_mime_types = tuple(self.allowed_mime_types)
        self.validate()

    def validate(self) -> None:
        """
        Check value ranges.

        Raises:
            ConfigError: If any value is out of range
        """
        if not 1 <= self.image_quality <= 100:
            raise ConfigError(f"image_quality must be in 1-100, got {self.image_quality}")
        if self.max_images_per_request < 1:
            raise ConfigError("max_images_per_request must be at least 1")
        if self.max_workers < 1:
            raise ConfigError("max_workers must be at least 1")
        if self.compress_timeout <= 0:
            raise ConfigError("compress_timeout must be positive")
        if not self.allowed_mime_types:
            raise ConfigError("allowed_mime_types must not be empty")

    @property
    def storage_path(self) -> Path:
        return Path(self.storage_root)

    def to_dict(self) -> dict:
        """Convert settings to dictionary."""
        data = asdict(self)
        data['allowed_mime_types'] = list(self.allowed_mime_types)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'ScanSettings':
        """Create settings from dictionary."""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


def _parse_mime_types(value: str) -> Tuple[str, ...]:
    return tuple(part.strip() for part in value.split(',') if part.strip())


# Environment suffix -> (field name, parser)
_ENV_FIELDS = {
    'STORAGE_ROOT': ('storage_root', str),
    'MAX_IMAGES': ('max_images_per_request', int),
    'ALLOWED_MIME_TYPES': ('allowed_mime_types', _parse_mime_types),
    'IMAGE_QUALITY': ('image_quality', int),
    'MAX_WORKERS': ('max_workers', int),
    'COMPRESS_TIMEOUT': ('compress_timeout', float),
    'GS_BINARY': ('gs_binary', str),
}


def get_config_path() -> Path:
    """
    Get the path to the configuration file.

    Returns:
        Path to settings.json
    """
    config_dir = Path(user_config_dir("SheetScan"))
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir / "settings.json"


def settings_from_env(base: dict, environ: Mapping[str, str]) -> dict:
    """
    Apply SHEETSCAN_* environment overrides on top of a settings dictionary.

    Args:
        base: Settings dictionary to override
        environ: Environment mapping

    Returns:
        New dictionary with overrides applied

    Raises:
        ConfigError: If an override cannot be parsed
    """
    data = dict(base)
    for suffix, (name, parser) in _ENV_FIELDS.items():
        key = ENV_PREFIX + suffix
        raw = environ.get(key)
        if raw is None or raw == '':
            continue
        try:
            data[name] = parser(raw)
        except ValueError as e:
            raise ConfigError(f"Invalid value for {key}: {raw!r}") from e
        logger.debug(f"Config override from {key}")
    return data


def load_settings(config_path: Optional[Path] = None,
                  environ: Optional[Mapping[str, str]] = None) -> ScanSettings:
    """
    Load settings from disk, then apply environment overrides.

    Args:
        config_path: Settings file (defaults to the per-user config dir)
        environ: Environment mapping (defaults to os.environ)

    Returns:
        ScanSettings object with loaded settings

    Raises:
        ConfigError: If an environment override or value is invalid
    """
    config_path = config_path or get_config_path()
    environ = os.environ if environ is None else environ

    data = {}
    if config_path.exists():
        try:
            with open(config_path, 'r') as f:
                data = json.load(f)
            logger.info(f"Loaded settings from {config_path}")
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load settings: {e}, using defaults")
            data = {}
    else:
        logger.info("No settings file found, using defaults")

    data = settings_from_env(data, environ)
    try:
        return ScanSettings.from_dict(data)
    except TypeError as e:
        raise ConfigError(f"Invalid settings: {e}") from e


def save_settings(settings: ScanSettings, config_path: Optional[Path] = None) -> None:
    """
    Save settings to disk.

    Args:
        settings: ScanSettings object to save
        config_path: Destination (defaults to the per-user config dir)

    Raises:
        ConfigError: If save fails
    """
    config_path = config_path or get_config_path()

    try:
        with open(config_path, 'w') as f:
            json.dump(settings.to_dict(), f, indent=2)
        logger.info(f"Saved settings to {config_path}")
    except Exception as e:
        logger.error(f"Failed to save settings: {e}")
        raise ConfigError(f"Failed to save settings: {str(e)}") from e
