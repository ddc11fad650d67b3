# Copyright 2026 Canonical Ltd.
# See LICENSE file for licensing details.

"""Primary availability prober and promotion watcher."""

import logging
import threading
from collections.abc import Callable
from enum import Enum

from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_when_event_set,
    wait_fixed,
)

from config import ReplicaConfig
from postgresql import NotReadyError, PostgreSQL, ProbeCancelledError

logger = logging.getLogger(__name__)


class ProbeResult(Enum):
    """Outcome of waiting for the primary."""

    PRIMARY_READY = "primary-ready"
    PROMOTED_SELF = "promoted-self"


class PrimaryProber:
    """Waits for the primary to accept queries unless this node gets promoted first."""

    def __init__(
        self,
        config: ReplicaConfig,
        postgresql: PostgreSQL,
        cancel: threading.Event | None = None,
    ):
        """Initialize the PrimaryProber class.

        Args:
            config: the replica configuration.
            postgresql: helper running the checks against the primary.
            cancel: event that aborts the wait when set.
        """
        self.config = config
        self.postgresql = postgresql
        self.cancel = cancel if cancel is not None else threading.Event()

    def promotion_requested(self) -> bool:
        """Whether an external agent dropped the promotion trigger file."""
        return self.config.trigger_file.exists()

    def wait_for_primary(self) -> ProbeResult:
        """Poll the primary until it is reachable and answers a query.

        The promotion trigger is checked before every attempt and wins over
        any further waiting.

        Returns:
            PRIMARY_READY once both checks pass, PROMOTED_SELF as soon as the
            promotion trigger is found.

        Raises:
            ProbeCancelledError: if the cancellation event was set.
        """
        host = self.config.primary_host
        result = self._poll(
            lambda: self.postgresql.is_ready(host), f"Attempting pg_isready on primary {host}"
        )
        if result is ProbeResult.PROMOTED_SELF:
            return result

        # A primary in the middle of its own failover can be reachable but still refuse queries.
        return self._poll(
            lambda: self.postgresql.can_query(host), f"Attempting query on primary {host}"
        )

    def _poll(self, check: Callable[[], bool], description: str) -> ProbeResult:
        try:
            for attempt in Retrying(
                retry=retry_if_exception_type(NotReadyError),
                stop=stop_when_event_set(self.cancel),
                wait=wait_fixed(self.config.poll_interval),
                sleep=self.cancel.wait,
            ):
                with attempt:
                    if self.promotion_requested():
                        logger.info(
                            "Postgres promotion trigger_file found. Running primary run script"
                        )
                        return ProbeResult.PROMOTED_SELF
                    logger.info(description)
                    if not check():
                        raise NotReadyError(description)
                    return ProbeResult.PRIMARY_READY
        except RetryError as e:
            raise ProbeCancelledError("wait for primary cancelled") from e
