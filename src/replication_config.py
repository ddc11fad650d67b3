# Copyright 2026 Canonical Ltd.
# See LICENSE file for licensing details.

"""Replication configuration written to the data directory before PostgreSQL starts."""

import logging
from pathlib import Path

from jinja2 import Template

from config import ReplicaConfig
from constants import (
    CONFIGURATION_FILE_MODE,
    MAX_WAL_SENDERS,
    POSTGRESQL_CONF_FILE,
    RECOVERY_CONF_FILE,
    TEMPLATES_PATH,
    WAL_KEEP_SEGMENTS,
)
from utils import render_file

logger = logging.getLogger(__name__)

# Installed next to the modules as package data.
TEMPLATES_DIR = Path(__file__).resolve().parent / TEMPLATES_PATH


class ConfigurationTemplateError(Exception):
    """Raised when a base configuration file or a template cannot be read."""


class ReplicationConfigMaterializer:
    """Renders recovery.conf and postgresql.conf for a streaming replica."""

    def __init__(self, config: ReplicaConfig, templates_dir: Path = TEMPLATES_DIR):
        """Initialize the ReplicationConfigMaterializer class.

        Args:
            config: the replica configuration.
            templates_dir: directory holding the jinja2 templates.
        """
        self.config = config
        self.templates_dir = templates_dir

    def _read_base_config(self, path: Path) -> str:
        try:
            return path.read_text().rstrip("\n")
        except OSError as e:
            raise ConfigurationTemplateError(f"cannot read base configuration {path}: {e}") from e

    def _render(self, template_name: str, base_path: Path, **values) -> str:
        path = self.templates_dir / template_name
        try:
            with open(path) as file:
                template = Template(file.read())
        except OSError as e:
            raise ConfigurationTemplateError(f"cannot read template {path}: {e}") from e
        return template.render(base_config=self._read_base_config(base_path), **values) + "\n"

    def render_recovery_conf(self) -> str:
        """Render recovery.conf on top of the base recovery configuration."""
        return self._render(
            "recovery.conf.j2",
            self.config.recovery_conf_template,
            wal_path=self.config.wal_path,
            # primary_conninfo is used for streaming replication.
            application_name=self.config.hostname,
            primary_host=self.config.primary_host,
        )

    def render_postgresql_conf(self) -> str:
        """Render postgresql.conf on top of the base server configuration."""
        return self._render(
            "postgresql.conf.j2",
            self.config.postgresql_conf_template,
            max_wal_senders=MAX_WAL_SENDERS,
            wal_keep_segments=WAL_KEEP_SEGMENTS,
            hot_standby=self.config.hot_standby,
            synchronous=self.config.synchronous,
        )

    def materialize(self) -> None:
        """Write both configuration files into the data directory.

        Raises:
            ConfigurationTemplateError: if a base configuration file is missing.
        """
        data_dir = self.config.data_dir
        recovery_conf = self.render_recovery_conf()
        postgresql_conf = self.render_postgresql_conf()

        logger.info(
            f"Writing replication configuration to {data_dir} "
            f"(standby={self.config.standby}, streaming={self.config.streaming})"
        )
        render_file(data_dir / RECOVERY_CONF_FILE, recovery_conf, CONFIGURATION_FILE_MODE)
        render_file(data_dir / POSTGRESQL_CONF_FILE, postgresql_conf, CONFIGURATION_FILE_MODE)
