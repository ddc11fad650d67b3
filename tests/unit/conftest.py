#!/usr/bin/env python3
# Copyright 2026 Canonical Ltd.
# See LICENSE file for licensing details.
import threading

import pytest

from config import ReplicaConfig


@pytest.fixture()
def base_templates(tmp_path):
    scripts = tmp_path / "scripts"
    (scripts / "replica").mkdir(parents=True)
    (scripts / "primary").mkdir(parents=True)
    recovery_conf = scripts / "replica" / "recovery.conf"
    postgresql_conf = scripts / "primary" / "postgresql.conf"
    recovery_conf.write_text("standby_mode = on\n")
    postgresql_conf.write_text("listen_addresses = '*'\nmax_connections = 100\n")
    yield recovery_conf, postgresql_conf


@pytest.fixture()
def data_dir(tmp_path):
    path = tmp_path / "data"
    path.mkdir()
    yield path


@pytest.fixture()
def make_config(tmp_path, data_dir, base_templates):
    recovery_conf, postgresql_conf = base_templates

    def _make_config(**overrides) -> ReplicaConfig:
        values = {
            "primary_host": "postgres-0.postgres",
            "password": "fake-password",
            "data_dir": data_dir,
            "hostname": "postgres-1",
            "trigger_file": tmp_path / "pg-failover-trigger",
            "primary_run_script": tmp_path / "scripts" / "primary" / "run.sh",
            "recovery_conf_template": recovery_conf,
            "postgresql_conf_template": postgresql_conf,
            "poll_interval": 0,
        }
        values.update(overrides)
        return ReplicaConfig(**values)

    yield _make_config


@pytest.fixture()
def config(make_config):
    yield make_config()


@pytest.fixture()
def cancel():
    yield threading.Event()
