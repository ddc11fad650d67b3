# Copyright 2026 Canonical Ltd.
# See LICENSE file for licensing details.
from unittest.mock import Mock, patch

import pytest

from postgresql import BaseBackupFailedError, PostgreSQL, ProbeCancelledError
from replica import NodeRole, ReplicaBootstrap, main
from replication_config import ConfigurationTemplateError, ReplicationConfigMaterializer
from synchronizer import RewindFailedError, SyncDecision, Synchronizer


@pytest.fixture()
def postgresql():
    postgresql = Mock(spec=PostgreSQL)
    postgresql.is_ready.return_value = True
    postgresql.can_query.return_value = True
    postgresql.environment = {"PGPASSWORD": "fake-password"}
    yield postgresql


@pytest.fixture()
def bootstrap(config, postgresql, cancel):
    bootstrap = ReplicaBootstrap(config, postgresql, cancel)
    bootstrap.materializer = Mock(spec=ReplicationConfigMaterializer)
    bootstrap.synchronizer = Mock(spec=Synchronizer)
    bootstrap.synchronizer.synchronize.return_value = SyncDecision.INCREMENTAL_REWIND
    yield bootstrap


def test_run_as_replica(bootstrap, postgresql):
    manager = Mock()
    manager.attach_mock(bootstrap.synchronizer, "synchronizer")
    manager.attach_mock(bootstrap.materializer, "materializer")
    manager.attach_mock(postgresql.exec_server, "exec_server")

    with patch("os.execvpe") as _execvpe:
        bootstrap.run()

    assert bootstrap.role is NodeRole.REPLICA
    assert [c[0] for c in manager.mock_calls] == [
        "synchronizer.synchronize",
        "materializer.materialize",
        "exec_server",
    ]
    _execvpe.assert_not_called()


def test_run_promoted(bootstrap, postgresql, config):
    config.trigger_file.touch()

    with patch("os.execvpe") as _execvpe:
        bootstrap.run()

    assert bootstrap.role is NodeRole.PRIMARY
    script = str(config.primary_run_script)
    _execvpe.assert_called_once_with(script, [script], {"PGPASSWORD": "fake-password"})
    # The data directory is left untouched.
    bootstrap.synchronizer.synchronize.assert_not_called()
    bootstrap.materializer.materialize.assert_not_called()
    postgresql.exec_server.assert_not_called()


def test_run_synchronization_failure(bootstrap, postgresql):
    bootstrap.synchronizer.synchronize.side_effect = RewindFailedError("could not connect")

    with pytest.raises(RewindFailedError):
        bootstrap.run()

    bootstrap.materializer.materialize.assert_not_called()
    postgresql.exec_server.assert_not_called()


def test_main(monkeypatch):
    monkeypatch.setenv("PRIMARY_HOST", "postgres-0.postgres")
    with patch("replica.ReplicaBootstrap") as _bootstrap:
        assert main([]) == 0

    _bootstrap.assert_called_once()
    config = _bootstrap.call_args.args[0]
    assert config.primary_host == "postgres-0.postgres"
    _bootstrap.return_value.run.assert_called_once_with()


def test_main_invalid_configuration(monkeypatch):
    monkeypatch.delenv("PRIMARY_HOST", raising=False)
    with patch("replica.ReplicaBootstrap") as _bootstrap:
        assert main([]) == 1

    _bootstrap.assert_not_called()


@pytest.mark.parametrize(
    "error",
    [
        BaseBackupFailedError("pg_basebackup failed"),
        RewindFailedError("could not connect to server"),
        ConfigurationTemplateError("cannot read base configuration"),
        ProbeCancelledError("cancelled"),
    ],
)
def test_main_bootstrap_failure(monkeypatch, caplog, error):
    monkeypatch.setenv("PRIMARY_HOST", "postgres-0.postgres")
    with patch("replica.ReplicaBootstrap") as _bootstrap:
        _bootstrap.return_value.run.side_effect = error
        assert main([]) == 1

    assert "Replica bootstrap failed" in caplog.text


def test_main_unexpected_error(monkeypatch):
    monkeypatch.setenv("PRIMARY_HOST", "postgres-0.postgres")
    with patch("replica.ReplicaBootstrap") as _bootstrap:
        _bootstrap.return_value.run.side_effect = FileNotFoundError("pg_rewind")
        with pytest.raises(FileNotFoundError):
            main([])


def test_main_log_level(monkeypatch):
    monkeypatch.setenv("PRIMARY_HOST", "postgres-0.postgres")
    with (
        patch("replica.ReplicaBootstrap"),
        patch("logging.basicConfig") as _basic_config,
    ):
        main(["--log-level", "DEBUG"])

    assert _basic_config.call_args.kwargs["level"] == "DEBUG"

    with pytest.raises(SystemExit):
        main(["--log-level", "TRACE"])


def test_run_twice_on_consistent_replica(config, postgresql, cancel, data_dir):
    (data_dir / "PG_VERSION").write_text("11")
    postgresql.has_data.return_value = True
    postgresql.has_stale_lock_file.return_value = False
    postgresql.rewind.return_value = (0, "pg_rewind: no rewind required")

    snapshots = []
    for _ in range(2):
        ReplicaBootstrap(config, postgresql, cancel).run()
        snapshots.append({p.name: p.read_text() for p in data_dir.iterdir()})

    # Only the configuration files are written and their content is stable.
    assert snapshots[0] == snapshots[1]
    assert sorted(snapshots[0]) == ["PG_VERSION", "postgresql.conf", "recovery.conf"]
    postgresql.take_base_backup.assert_not_called()
    assert postgresql.exec_server.call_count == 2
