# Copyright 2026 Canonical Ltd.
# See LICENSE file for licensing details.

"""File containing constants to be used by the replica bootstrap."""

# Environment variables.
PRIMARY_HOST_ENV = "PRIMARY_HOST"
PASSWORD_ENV = "POSTGRES_PASSWORD"  # noqa: S105
STANDBY_ENV = "STANDBY"
STREAMING_ENV = "STREAMING"
DATA_PATH_ENV = "PGDATA"
WAL_PATH_ENV = "PGWAL"
HOSTNAME_ENV = "HOSTNAME"
ARCHIVE_ENV = "ARCHIVE"

DEFAULT_PASSWORD = "postgres"  # noqa: S105
DATABASE_DEFAULT_NAME = "postgres"
DATABASE_PORT = 5432
USER = "postgres"

POSTGRESQL_DATA_PATH = "/var/pv/data"

# Files provided by the image.
PROMOTION_TRIGGER_FILE = "/tmp/pg-failover-trigger"  # noqa: S108
PRIMARY_RUN_SCRIPT = "/scripts/primary/run.sh"
RECOVERY_CONF_TEMPLATE = "/scripts/replica/recovery.conf"
POSTGRESQL_CONF_TEMPLATE = "/scripts/primary/postgresql.conf"

# Files inside the data directory.
VERSION_FILE = "PG_VERSION"
CONTROL_FILE = "global/pg_control"
POSTMASTER_PID_FILE = "postmaster.pid"
RECOVERY_CONF_FILE = "recovery.conf"
POSTGRESQL_CONF_FILE = "postgresql.conf"

DATA_DIRECTORY_MODE = 0o700
CONFIGURATION_FILE_MODE = 0o600

POLL_INTERVAL = 2
PROBE_TIMEOUT = 2
PROBE_QUERY = "select now();"

# pg_rewind failure signatures, in the order they are checked.
REWIND_NOT_CLEAN_SHUTDOWN = "target server must be shut down cleanly"
REWIND_MISSING_WAL = "could not find previous WAL record"
REWIND_NO_COMMON_ANCESTOR = "could not find common ancestor"
REWIND_CHECKSUMS_DISABLED = "server needs to use either data checksums"

# Replication settings always applied to postgresql.conf.
MAX_WAL_SENDERS = 96
WAL_KEEP_SEGMENTS = 32

TEMPLATES_PATH = "replica_templates"
