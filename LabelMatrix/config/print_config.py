"""
Environment driven configuration for the print pipeline.

Values are read with os.getenv; main.py calls load_dotenv() first so a local
.env file can supply them.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import List

from LabelMatrix.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default: str, cast):
    raw = os.getenv(name, default)
    try:
        return cast(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid value for {name}: {raw!r}", config_field=name, config_value=raw)


def _env_list(name: str) -> List[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class PrintConfig:
    label_width_in: float = 4.0
    label_height_in: float = 2.0
    label_dpi: int = 203
    auto_dispatch: bool = True
    probe_timeout_seconds: float = 5.0
    network_ranges: List[str] = field(default_factory=list)
    network_hosts: List[str] = field(default_factory=list)
    network_port: int = 9100
    job_retention_seconds: float = 3600.0
    shutdown_drain_seconds: float = 10.0
    register_mock_printer: bool = False

    @classmethod
    def from_env(cls) -> "PrintConfig":
        """Build the configuration from environment variables."""
        config = cls(
            label_width_in=_env_number("LABEL_WIDTH_IN", "4", float),
            label_height_in=_env_number("LABEL_HEIGHT_IN", "2", float),
            label_dpi=_env_number("LABEL_DPI", "203", int),
            auto_dispatch=_env_bool("PRINT_AUTO_DISPATCH", "true"),
            probe_timeout_seconds=_env_number("PRINTER_PROBE_TIMEOUT", "5", float),
            network_ranges=_env_list("PRINTER_NETWORK_RANGES"),
            network_hosts=_env_list("PRINTER_NETWORK_HOSTS"),
            network_port=_env_number("PRINTER_NETWORK_PORT", "9100", int),
            job_retention_seconds=_env_number("PRINT_JOB_RETENTION_SECONDS", "3600", float),
            shutdown_drain_seconds=_env_number("PRINT_SHUTDOWN_DRAIN_SECONDS", "10", float),
            register_mock_printer=_env_bool("PRINT_MOCK_PRINTER", "false"),
        )
        config.validate()
        return config

    def validate(self):
        if self.label_width_in <= 0 or self.label_height_in <= 0:
            raise ConfigurationError("Label dimensions must be positive", config_field="LABEL_WIDTH_IN/LABEL_HEIGHT_IN")
        if self.label_dpi <= 0:
            raise ConfigurationError("DPI must be positive", config_field="LABEL_DPI", config_value=str(self.label_dpi))
        if self.probe_timeout_seconds <= 0:
            raise ConfigurationError("Probe timeout must be positive", config_field="PRINTER_PROBE_TIMEOUT")
        logger.debug(f"Print configuration loaded: {self}")
