"""Configuration system for sysmon."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit

from sysmon.counters import SOURCE_KINDS
from sysmon.ranking import SortMetric

LOG_LEVELS = ("debug", "info", "warning", "error")


@dataclass
class SamplingConfig:
    """Sampling loop configuration."""

    refresh_interval: int = 2  # Seconds between samples, at least 1
    sort_metric: str = "cpu"  # "cpu" or "mem"
    source: str = "auto"  # "auto", "procfs" or "psutil"

    @property
    def metric(self) -> SortMetric:
        """Sort metric as an enum."""
        return SortMetric(self.sort_metric)


@dataclass
class DisplayConfig:
    """Dashboard configuration."""

    command_width: int = 60  # Command column truncation


@dataclass
class LoggingConfig:
    """Log output configuration."""

    level: str = "info"
    max_bytes: int = 1024 * 1024  # Rotate the log file at 1MB
    backup_count: int = 2


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """Main configuration container."""

    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    display: DisplayConfig = field(default_factory=DisplayConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "sysmon"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory holding the log file."""
        return Path.home() / ".local" / "state" / "sysmon"

    @property
    def log_path(self) -> Path:
        """Log file path."""
        return self.state_dir / "sysmon.log"

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        doc.add(tomlkit.comment("sysmon configuration"))
        doc.add(tomlkit.nl())
        for name in ("sampling", "display", "logging"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions.

        Raises:
            ValueError: If the file cannot be parsed or holds an invalid value.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        return cls(
            sampling=_load_sampling_config(data.get("sampling", {})),
            display=_load_display_config(data.get("display", {})),
            logging=_load_logging_config(data.get("logging", {})),
        )


def _load_sampling_config(data: dict) -> SamplingConfig:
    """Load sampling config from TOML data, using dataclass defaults for missing fields."""
    d = SamplingConfig()
    refresh_interval = int(data.get("refresh_interval", d.refresh_interval))
    sort_metric = str(data.get("sort_metric", d.sort_metric))
    source = str(data.get("source", d.source))

    if refresh_interval < 1:
        raise ValueError(f"Invalid refresh_interval: {refresh_interval}. Must be at least 1")
    valid_metrics = [m.value for m in SortMetric]
    if sort_metric not in valid_metrics:
        raise ValueError(f"Invalid sort_metric: {sort_metric!r}. Must be one of {valid_metrics}")
    if source not in SOURCE_KINDS:
        raise ValueError(f"Invalid source: {source!r}. Must be one of {list(SOURCE_KINDS)}")

    return SamplingConfig(
        refresh_interval=refresh_interval,
        sort_metric=sort_metric,
        source=source,
    )


def _load_display_config(data: dict) -> DisplayConfig:
    """Load display config from TOML data."""
    d = DisplayConfig()
    return DisplayConfig(
        command_width=int(data.get("command_width", d.command_width)),
    )


def _load_logging_config(data: dict) -> LoggingConfig:
    """Load logging config from TOML data."""
    d = LoggingConfig()
    level = str(data.get("level", d.level)).lower()
    if level not in LOG_LEVELS:
        raise ValueError(f"Invalid log level: {level!r}. Must be one of {list(LOG_LEVELS)}")
    return LoggingConfig(
        level=level,
        max_bytes=int(data.get("max_bytes", d.max_bytes)),
        backup_count=int(data.get("backup_count", d.backup_count)),
    )
