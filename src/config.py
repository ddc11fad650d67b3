# Copyright 2026 Canonical Ltd.
# See LICENSE file for licensing details.

"""Structured configuration for the replica bootstrap."""

import logging
import socket
from collections.abc import Mapping
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from constants import (
    ARCHIVE_ENV,
    DATA_PATH_ENV,
    DATABASE_DEFAULT_NAME,
    DATABASE_PORT,
    DEFAULT_PASSWORD,
    HOSTNAME_ENV,
    PASSWORD_ENV,
    POLL_INTERVAL,
    POSTGRESQL_CONF_TEMPLATE,
    POSTGRESQL_DATA_PATH,
    PRIMARY_HOST_ENV,
    PRIMARY_RUN_SCRIPT,
    PROBE_TIMEOUT,
    PROMOTION_TRIGGER_FILE,
    RECOVERY_CONF_TEMPLATE,
    STANDBY_ENV,
    STREAMING_ENV,
    USER,
    WAL_PATH_ENV,
)

logger = logging.getLogger(__name__)


class ReplicaConfig(BaseModel):
    """Immutable configuration shared by every bootstrap component."""

    model_config = ConfigDict(frozen=True)

    primary_host: str = Field(min_length=1)
    password: str = Field(default=DEFAULT_PASSWORD, repr=False)
    standby: Literal["hot", "warm"] = Field(default="warm")
    streaming: Literal["synchronous", "asynchronous"] = Field(default="asynchronous")
    data_dir: Path = Field(default=Path(POSTGRESQL_DATA_PATH))
    wal_dir: Path | None = Field(default=None)
    hostname: str = Field(default_factory=socket.gethostname)
    archive: str | None = Field(default=None)

    user: str = Field(default=USER)
    port: int = Field(default=DATABASE_PORT, ge=1, le=65535)
    database: str = Field(default=DATABASE_DEFAULT_NAME)

    trigger_file: Path = Field(default=Path(PROMOTION_TRIGGER_FILE))
    primary_run_script: Path = Field(default=Path(PRIMARY_RUN_SCRIPT))
    recovery_conf_template: Path = Field(default=Path(RECOVERY_CONF_TEMPLATE))
    postgresql_conf_template: Path = Field(default=Path(POSTGRESQL_CONF_TEMPLATE))

    poll_interval: float = Field(default=POLL_INTERVAL, ge=0)
    probe_timeout: int = Field(default=PROBE_TIMEOUT, ge=1)

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> "ReplicaConfig":
        """Build the configuration from process environment variables.

        Empty values are treated as if the variable was not set.

        Args:
            environ: the environment mapping, usually ``os.environ``.

        Returns:
            The validated configuration.

        Raises:
            pydantic.ValidationError: if a variable holds an unsupported value.
        """
        mapping = {
            "primary_host": PRIMARY_HOST_ENV,
            "password": PASSWORD_ENV,
            "standby": STANDBY_ENV,
            "streaming": STREAMING_ENV,
            "data_dir": DATA_PATH_ENV,
            "wal_dir": WAL_PATH_ENV,
            "hostname": HOSTNAME_ENV,
            "archive": ARCHIVE_ENV,
        }
        values = {field: environ[env] for field, env in mapping.items() if environ.get(env)}
        config = cls(**values)
        if config.archive:
            logger.warning(
                f"{ARCHIVE_ENV}={config.archive} is set but archive based WAL recovery "
                "is not supported, missing WAL will be recovered with a base backup"
            )
        return config

    @property
    def wal_path(self) -> Path:
        """Directory holding the WAL segments pruned by the archive cleanup command."""
        return self.wal_dir if self.wal_dir is not None else self.data_dir / "pg_wal"

    @property
    def hot_standby(self) -> bool:
        """Whether read queries are allowed while replaying WAL."""
        return self.standby == "hot"

    @property
    def synchronous(self) -> bool:
        """Whether the primary waits for this replica before committing."""
        return self.streaming == "synchronous"

    @property
    def source_server(self) -> str:
        """Connection string used by pg_rewind to reach the primary."""
        return (
            f"host={self.primary_host} user={self.user} "
            f"port={self.port} dbname={self.database}"
        )
