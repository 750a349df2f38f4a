"""
Object shared by every cms-bridge command through ``click.Context.obj``.
"""

from dataclasses import dataclass, field
from pathlib import Path

from pydantic import ValidationError

from cms_migration.client.exceptions import ConfigurationError
from cms_migration.config import MigrationConfig, load_config_from_yaml
from cms_migration.migration.identity import IdentityMapStore
from cms_migration.migration.media import ImageCache
from cms_migration.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class MigrationContext:
    """Global options plus the configuration, loaded on first access.

    Attributes:
        config_path: YAML configuration file, if one was given
        log_level: Console log level
        log_file: JSON-lines log file
    """

    config_path: Path | None = None
    log_level: str = "WARNING"
    log_file: Path | None = None

    _config: MigrationConfig | None = field(default=None, init=False, repr=False)

    @property
    def config(self) -> MigrationConfig:
        """The validated configuration.

        Raises:
            ConfigurationError: No path was given, or the file does not load
        """
        if self._config is not None:
            return self._config
        if self.config_path is None:
            raise ConfigurationError(
                "Configuration file path not provided. "
                "Use --config option or set CMS_BRIDGE_CONFIG environment variable."
            )
        try:
            self._config = load_config_from_yaml(self.config_path)
        except (FileNotFoundError, ValueError, ValidationError) as e:
            raise ConfigurationError(str(e)) from e
        logger.debug("config_loaded", path=str(self.config_path))
        return self._config

    def identity_store(self) -> IdentityMapStore:
        """Identity maps under the configured CSV directory."""
        return IdentityMapStore(self.config.paths.csv_path)

    def image_cache(self) -> ImageCache:
        return ImageCache(self.config.paths.image_map_path).load()
