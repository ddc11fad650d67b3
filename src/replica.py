#!/usr/bin/env python3
# Copyright 2026 Canonical Ltd.
# See LICENSE file for licensing details.

"""Bootstrap entry point of a PostgreSQL replica container.

Waits for the primary, synchronizes the local data directory with it, writes
the replication configuration and finally replaces itself with the PostgreSQL
server. When the promotion trigger shows up while waiting, control is handed
to the primary run script instead.

Usage:
    python3 replica.py [--log-level LEVEL]
"""

import argparse
import logging
import os
import sys
import threading
from enum import Enum
from typing import NoReturn

from pydantic import ValidationError

from config import ReplicaConfig
from postgresql import PostgreSQL, ProbeCancelledError, SynchronizationError
from prober import PrimaryProber, ProbeResult
from replication_config import ConfigurationTemplateError, ReplicationConfigMaterializer
from synchronizer import Synchronizer

logger = logging.getLogger(__name__)


class NodeRole(Enum):
    """Role this node ends up running as."""

    REPLICA = "replica"
    PRIMARY = "primary"


class ReplicaBootstrap:
    """Runs the replica startup sequence and hands the process over."""

    def __init__(
        self,
        config: ReplicaConfig,
        postgresql: PostgreSQL | None = None,
        cancel: threading.Event | None = None,
    ):
        """Initialize the ReplicaBootstrap class.

        Args:
            config: the replica configuration.
            postgresql: PostgreSQL helper, built from the configuration when omitted.
            cancel: event that aborts the polling loops when set.
        """
        self.config = config
        self.cancel = cancel if cancel is not None else threading.Event()
        self.postgresql = postgresql if postgresql is not None else PostgreSQL(config)
        self.materializer = ReplicationConfigMaterializer(config)
        self.prober = PrimaryProber(config, self.postgresql, self.cancel)
        self.synchronizer = Synchronizer(config, self.postgresql, self.materializer, self.cancel)
        self.role: NodeRole | None = None

    def run(self) -> NoReturn:
        """Bring the replica up and exec into PostgreSQL or the primary run script.

        Raises:
            SynchronizationError: if the data directory cannot be synchronized.
            ConfigurationTemplateError: if a base configuration file is missing.
            ProbeCancelledError: if waiting was cancelled.
        """
        logger.info("Running as Replica")

        if self.prober.wait_for_primary() is ProbeResult.PROMOTED_SELF:
            self.role = NodeRole.PRIMARY
            self._run_as_primary()
        else:
            self.role = NodeRole.REPLICA
            decision = self.synchronizer.synchronize()
            logger.info(f"Data directory synchronized using {decision.value}")

            self.materializer.materialize()
            self.postgresql.exec_server()

    def _run_as_primary(self) -> NoReturn:
        script = str(self.config.primary_run_script)
        logger.info(f"Handing over to {script}")
        os.execvpe(script, [script], self.postgresql.environment)  # noqa: S606


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, configure logging and run the bootstrap.

    Returns:
        The process exit code. Only failures return, success replaces the process.
    """
    parser = argparse.ArgumentParser(
        prog="pg-replica-bootstrap",
        description="Synchronize a PostgreSQL replica with its primary and start it.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    try:
        config = ReplicaConfig.from_env(os.environ)
    except ValidationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    try:
        ReplicaBootstrap(config).run()
    except (SynchronizationError, ConfigurationTemplateError, ProbeCancelledError) as e:
        logger.error(f"Replica bootstrap failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
