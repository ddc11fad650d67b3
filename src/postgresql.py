# Copyright 2026 Canonical Ltd.
# See LICENSE file for licensing details.

"""Helper class used to drive the local PostgreSQL server and its client tools."""

import logging
import os
import subprocess
import threading
from pathlib import Path
from typing import NoReturn

import psycopg2
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_when_event_set,
    wait_fixed,
)

from config import ReplicaConfig
from constants import (
    CONTROL_FILE,
    DATA_DIRECTORY_MODE,
    POSTMASTER_PID_FILE,
    PROBE_QUERY,
    VERSION_FILE,
)
from utils import recreate_directory

logger = logging.getLogger(__name__)


class NotReadyError(Exception):
    """Raised when a PostgreSQL server is not ready yet."""


class ProbeCancelledError(Exception):
    """Raised when a polling loop is cancelled before its condition is met."""


class SynchronizationError(Exception):
    """Raised when the replica cannot be synchronized with the primary."""


class BaseBackupFailedError(SynchronizationError):
    """Raised when pg_basebackup fails."""


class PostgreSQLStopError(SynchronizationError):
    """Raised when the local PostgreSQL server could not be stopped cleanly."""


class PostgreSQL:
    """This class handles the local PostgreSQL server and the tools run against the primary."""

    def __init__(self, config: ReplicaConfig):
        """Initialize the PostgreSQL class.

        Args:
            config: the replica configuration.
        """
        self.config = config

    @property
    def data_dir(self) -> Path:
        """Local data directory."""
        return self.config.data_dir

    @property
    def environment(self) -> dict[str, str]:
        """Environment passed to every PostgreSQL process started by the bootstrap."""
        env = os.environ.copy()
        env["PGPASSWORD"] = self.config.password
        env["PGDATA"] = str(self.data_dir)
        return env

    def _execute_command(
        self, command: list[str], combine_output: bool = False
    ) -> tuple[int, str, str]:
        """Execute a command and wait for it to finish.

        Args:
            command: the command and its arguments.
            combine_output: whether stderr is merged into stdout.

        Returns:
            The exit code, stdout and stderr of the command.
        """
        process = subprocess.run(  # noqa: S603
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT if combine_output else subprocess.PIPE,
            env=self.environment,
            text=True,
        )
        return process.returncode, process.stdout or "", process.stderr or ""

    def has_data(self) -> bool:
        """Whether the data directory holds an initialised cluster."""
        return (self.data_dir / VERSION_FILE).exists() and (self.data_dir / CONTROL_FILE).exists()

    def has_stale_lock_file(self) -> bool:
        """Whether a postmaster lock file was left behind by a server that was not stopped."""
        return (self.data_dir / POSTMASTER_PID_FILE).exists()

    def is_ready(self, host: str | None = None) -> bool:
        """Check whether a server accepts connections.

        Args:
            host: the server to check, the local server when omitted.

        Returns:
            True if pg_isready reports the server as accepting connections.
        """
        command = ["pg_isready", f"--timeout={self.config.probe_timeout}"]
        if host is not None:
            command.append(f"--host={host}")
        exit_code, _, _ = self._execute_command(command)
        return exit_code == 0

    def can_query(self, host: str) -> bool:
        """Check whether a server answers a trivial read-only query.

        Args:
            host: the server to query.

        Returns:
            True if the query round-trip succeeded.
        """
        connection = None
        try:
            connection = psycopg2.connect(
                host=host,
                port=self.config.port,
                dbname=self.config.database,
                user=self.config.user,
                password=self.config.password,
                connect_timeout=self.config.probe_timeout,
            )
            connection.autocommit = True
            with connection.cursor() as cursor:
                cursor.execute(PROBE_QUERY)
                cursor.fetchone()
            return True
        except psycopg2.Error as e:
            logger.debug(f"Query on {host} failed: {e}")
            return False
        finally:
            if connection is not None:
                connection.close()

    def take_base_backup(self) -> None:
        """Replace the data directory with a full copy of the primary.

        Raises:
            BaseBackupFailedError: if pg_basebackup fails.
        """
        recreate_directory(self.data_dir, DATA_DIRECTORY_MODE)

        logger.info("Taking base backup.")
        exit_code, stdout, stderr = self._execute_command([
            "pg_basebackup",
            "-X",
            "fetch",
            "--no-password",
            "--pgdata",
            str(self.data_dir),
            f"--username={self.config.user}",
            f"--host={self.config.primary_host}",
        ])
        if exit_code != 0:
            logger.error(f"pg_basebackup failed with code {exit_code}: {stderr}")
            raise BaseBackupFailedError(stderr or stdout or f"exit code {exit_code}")

    def rewind(self) -> tuple[int, str]:
        """Run pg_rewind against the primary.

        Returns:
            The exit code of pg_rewind and its combined stdout/stderr output.
        """
        exit_code, output, _ = self._execute_command(
            [
                "pg_rewind",
                f"--source-server={self.config.source_server}",
                f"--target-pgdata={self.data_dir}",
            ],
            combine_output=True,
        )
        return exit_code, output

    def start(self) -> subprocess.Popen:
        """Start the local server in background without waiting for it."""
        logger.info("Starting PostgreSQL in background")
        return subprocess.Popen(  # noqa: S603
            ["postgres", "-D", str(self.data_dir)],  # noqa: S607
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            env=self.environment,
        )

    def wait_until_ready(self, cancel: threading.Event) -> None:
        """Block until the local server accepts connections.

        Args:
            cancel: event that aborts the wait when set.

        Raises:
            ProbeCancelledError: if the wait was cancelled.
        """
        try:
            for attempt in Retrying(
                retry=retry_if_exception_type(NotReadyError),
                stop=stop_when_event_set(cancel),
                wait=wait_fixed(self.config.poll_interval),
                sleep=cancel.wait,
            ):
                with attempt:
                    logger.info("Attempting pg_isready on localhost")
                    if not self.is_ready():
                        raise NotReadyError("local server is not ready")
        except RetryError as e:
            raise ProbeCancelledError("wait for local server cancelled") from e

    def stop(self) -> None:
        """Stop the local server and wait until the shutdown is complete.

        Raises:
            PostgreSQLStopError: if pg_ctl fails.
        """
        logger.info("Stopping PostgreSQL")
        exit_code, stdout, stderr = self._execute_command(
            ["pg_ctl", "-D", str(self.data_dir), "stop"]
        )
        if exit_code != 0:
            raise PostgreSQLStopError(stderr or stdout or f"exit code {exit_code}")

    def exec_server(self) -> NoReturn:
        """Replace the current process with the PostgreSQL server."""
        logger.info("Handing over to PostgreSQL")
        os.execvpe("postgres", ["postgres", "-D", str(self.data_dir)], self.environment)  # noqa: S606
