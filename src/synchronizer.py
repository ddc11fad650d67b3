# Copyright 2026 Canonical Ltd.
# See LICENSE file for licensing details.

"""Brings the local data directory in line with the primary.

A missing data directory is always cloned with pg_basebackup. An existing one
is rewound with pg_rewind; when the rewind fails its output decides what
happens next:

- the target was not shut down cleanly: start and cleanly stop the local
  server, then rewind once more;
- the diverged WAL or a common timeline ancestor cannot be found: fall back
  to a base backup;
- the server runs without data checksums and wal_log_hints: fall back to a
  base backup;
- anything else: give up without touching the data directory.
"""

import logging
import threading
from enum import Enum

from config import ReplicaConfig
from constants import (
    REWIND_CHECKSUMS_DISABLED,
    REWIND_MISSING_WAL,
    REWIND_NO_COMMON_ANCESTOR,
    REWIND_NOT_CLEAN_SHUTDOWN,
)
from postgresql import PostgreSQL, SynchronizationError
from replication_config import ReplicationConfigMaterializer

logger = logging.getLogger(__name__)


class RewindFailedError(SynchronizationError):
    """Raised when pg_rewind fails for a reason that has no known recovery."""

    def __init__(self, output: str):
        super().__init__(f"pg_rewind is failing and the reason is: {output}")
        self.output = output


class DataDirectoryState(Enum):
    """State of the local data directory before synchronization."""

    ABSENT = "absent"
    PRESENT_CLEAN = "present-clean"
    PRESENT_STALE = "present-stale"


class SyncDecision(Enum):
    """How the data directory was synchronized."""

    FULL_BASE_BACKUP = "full-base-backup"
    INCREMENTAL_REWIND = "incremental-rewind"


class RewindOutcome(Enum):
    """Classification of a single pg_rewind attempt."""

    SUCCESS = "success"
    SHUTDOWN_NOT_CLEAN = "shutdown-not-clean"
    MISSING_WAL = "missing-wal"
    NO_COMMON_ANCESTOR = "no-common-ancestor"
    CHECKSUMS_DISABLED = "checksums-disabled"
    OTHER_FAILURE = "other-failure"


# Checked in order, the first matching signature wins.
REWIND_FAILURE_SIGNATURES = (
    (REWIND_NOT_CLEAN_SHUTDOWN, RewindOutcome.SHUTDOWN_NOT_CLEAN),
    (REWIND_MISSING_WAL, RewindOutcome.MISSING_WAL),
    (REWIND_NO_COMMON_ANCESTOR, RewindOutcome.NO_COMMON_ANCESTOR),
    (REWIND_CHECKSUMS_DISABLED, RewindOutcome.CHECKSUMS_DISABLED),
)

BASE_BACKUP_FALLBACKS = frozenset({
    RewindOutcome.MISSING_WAL,
    RewindOutcome.NO_COMMON_ANCESTOR,
    RewindOutcome.CHECKSUMS_DISABLED,
})


# After the clean shutdown retry only the fallback signatures are considered.
RETRY_FAILURE_SIGNATURES = tuple(
    (signature, outcome)
    for signature, outcome in REWIND_FAILURE_SIGNATURES
    if outcome is not RewindOutcome.SHUTDOWN_NOT_CLEAN
)


def classify_rewind_output(
    exit_code: int,
    output: str,
    signatures: tuple[tuple[str, RewindOutcome], ...] = REWIND_FAILURE_SIGNATURES,
) -> RewindOutcome:
    """Classify a pg_rewind attempt from its exit code and output.

    Args:
        exit_code: exit code of pg_rewind.
        output: combined stdout/stderr of pg_rewind.
        signatures: ordered (signature, outcome) pairs to match the output against.

    Returns:
        SUCCESS for a zero exit code, otherwise the outcome of the first
        matching failure signature, or OTHER_FAILURE when none matches.
    """
    if exit_code == 0:
        return RewindOutcome.SUCCESS

    # Messages may be wrapped over several lines.
    normalized = " ".join(output.split())
    for signature, outcome in signatures:
        if signature in normalized:
            return outcome
    return RewindOutcome.OTHER_FAILURE


class Synchronizer:
    """Chooses between pg_basebackup and pg_rewind and applies the fallback rules."""

    def __init__(
        self,
        config: ReplicaConfig,
        postgresql: PostgreSQL,
        materializer: ReplicationConfigMaterializer,
        cancel: threading.Event | None = None,
    ):
        """Initialize the Synchronizer class.

        Args:
            config: the replica configuration.
            postgresql: helper driving the local server and its client tools.
            materializer: writes the replication configuration before the clean shutdown restart.
            cancel: event that aborts waiting for the local server when set.
        """
        self.config = config
        self.postgresql = postgresql
        self.materializer = materializer
        self.cancel = cancel if cancel is not None else threading.Event()

    def data_directory_state(self) -> DataDirectoryState:
        """Inspect the marker files of the local data directory."""
        if not self.postgresql.has_data():
            return DataDirectoryState.ABSENT
        if self.postgresql.has_stale_lock_file():
            return DataDirectoryState.PRESENT_STALE
        return DataDirectoryState.PRESENT_CLEAN

    def synchronize(self) -> SyncDecision:
        """Synchronize the data directory with the primary.

        Returns:
            The synchronization method that eventually succeeded.

        Raises:
            BaseBackupFailedError: if pg_basebackup fails.
            RewindFailedError: if pg_rewind fails for an unknown reason.
            PostgreSQLStopError: if the local server cannot be stopped cleanly.
        """
        state = self.data_directory_state()
        logger.info(f"Data directory {self.config.data_dir} is {state.value}")
        if state is DataDirectoryState.ABSENT:
            return self._take_base_backup()

        outcome, output = self._rewind()
        if outcome is RewindOutcome.SHUTDOWN_NOT_CLEAN:
            # pg_rewind only works on a target that was shut down cleanly.
            self.materializer.materialize()
            self._shutdown_gracefully()
            outcome, output = self._rewind(RETRY_FAILURE_SIGNATURES)

        if outcome is RewindOutcome.SUCCESS:
            return SyncDecision.INCREMENTAL_REWIND

        if outcome in BASE_BACKUP_FALLBACKS:
            # TODO: fetch the missing WAL from the archive when ARCHIVE is set and rewind again.
            logger.warning(f"pg_rewind cannot recover ({outcome.value}), falling back to base backup")
            return self._take_base_backup()

        logger.error(f"pg_rewind is failing and the reason is: {output}")
        raise RewindFailedError(output)

    def _take_base_backup(self) -> SyncDecision:
        self.postgresql.take_base_backup()
        return SyncDecision.FULL_BASE_BACKUP

    def _rewind(
        self,
        signatures: tuple[tuple[str, RewindOutcome], ...] = REWIND_FAILURE_SIGNATURES,
    ) -> tuple[RewindOutcome, str]:
        logger.info(f"Running pg_rewind against {self.config.primary_host}")
        exit_code, output = self.postgresql.rewind()
        logger.info(output)
        outcome = classify_rewind_output(exit_code, output, signatures)
        logger.info(f"pg_rewind finished with code {exit_code} ({outcome.value})")
        return outcome, output

    def _shutdown_gracefully(self) -> None:
        logger.info("Gracefully shutting down database")
        process = self.postgresql.start()
        try:
            self.postgresql.wait_until_ready(self.cancel)
            self.postgresql.stop()
        except BaseException:
            logger.error("Clean shutdown failed, terminating background PostgreSQL")
            process.terminate()
            raise
        finally:
            # The background server is always reaped before leaving.
            process.wait()
