#tests\test_cli.py

"""Test the operator command line."""

import pytest
from typer.testing import CliRunner

from conftest import service
from fleet_engine.cli import app


@pytest.fixture
def cli():
    return CliRunner()


def invoke(cli, container, *args):
    return cli.invoke(app, list(args), obj=container)


class TestValidate:

    def test_valid_manifest(self, cli, container, write_manifest):
        write_manifest(service("shop", 8001, frontend_enabled=True, frontend_port=3001))

        result = invoke(cli, container, "validate", "--json")

        assert result.exit_code == 0
        assert '"backend_port": 8001' in result.stdout
        assert '"frontend_port": 3001' in result.stdout

    def test_duplicate_name_exit_code(self, cli, container, write_manifest):
        write_manifest(service("a", 8001), service("a", 8002))

        result = invoke(cli, container, "validate")

        assert result.exit_code == 2

    def test_port_conflict_exit_code(self, cli, container, write_manifest):
        write_manifest(service("a", 8001), service("b", 8001))

        result = invoke(cli, container, "validate")

        assert result.exit_code == 3

    def test_manifest_option(self, cli, container, tmp_path, write_manifest):
        other = write_manifest(service("shop", 8001)).rename(tmp_path / "other.yaml")

        result = invoke(cli, container, "--manifest", str(other), "validate", "--json")

        assert result.exit_code == 0
        assert '"shop"' in result.stdout


class TestConverge:

    def test_provision(self, cli, container, write_manifest, supervisor, controller):
        write_manifest(service("shop", 8001))

        result = invoke(cli, container, "provision", "--json")

        assert result.exit_code == 0
        assert '"state": "running"' in result.stdout
        assert "fleet-shop-backend.service" in supervisor.units
        assert controller.reloads >= 1

    def test_failed_service_exit_code(self, cli, container, write_manifest, runner):
        write_manifest(service("shop", 8001))
        runner.fail_when(lambda args, cwd: args[0] == "make")

        result = invoke(cli, container, "provision")

        assert result.exit_code == 4

    def test_routing_failure_exit_code(self, cli, container, write_manifest, controller):
        write_manifest(service("shop", 8001))
        controller.reject = True

        result = invoke(cli, container, "route")

        assert result.exit_code == 5

    def test_deploy_subset(self, cli, container, write_manifest, fetcher, controller):
        write_manifest(service("a", 8001), service("b", 8002))

        result = invoke(cli, container, "deploy", "b")

        assert result.exit_code == 0
        assert fetcher.calls == ["b"]
        assert controller.tests == 0

    def test_lock_timeout_exit_code(self, cli, container, write_manifest):
        write_manifest(service("shop", 8001))

        with container.lock.hold("other"):
            result = invoke(cli, container, "deploy")

        assert result.exit_code == 6


class TestBackups:

    def test_backup_list_restore(self, cli, container, write_manifest, supervisor):
        write_manifest(service("shop", 8001, database_enabled=True, database_name="shop"))

        created = invoke(cli, container, "backup")
        assert created.exit_code == 0
        snapshot_id = container.snapshot_store.list()[0].snapshot_id

        listed = invoke(cli, container, "snapshots", "--verify", "--json")
        assert listed.exit_code == 0
        assert snapshot_id in listed.stdout
        assert '"problems": []' in listed.stdout

        restored = invoke(cli, container, "restore", snapshot_id, "--confirm", snapshot_id)
        assert restored.exit_code == 0
        assert "database:shop" in restored.stdout

    def test_restore_wrong_confirmation(self, cli, container, write_manifest):
        write_manifest(service("shop", 8001))
        invoke(cli, container, "backup")
        snapshot_id = container.snapshot_store.list()[0].snapshot_id

        result = invoke(cli, container, "restore", snapshot_id, "--confirm", "nope")

        assert result.exit_code == 9

    def test_restore_tampered_snapshot(self, cli, container, write_manifest):
        write_manifest(service("shop", 8001))
        invoke(cli, container, "backup")
        snapshot = container.snapshot_store.list()[0]
        path = container.snapshot_store.path_for(snapshot.snapshot_id) / snapshot.resources[0].filename
        path.write_bytes(path.read_bytes() + b"x")

        result = invoke(cli, container, "restore", snapshot.snapshot_id, "--confirm", snapshot.snapshot_id)

        assert result.exit_code == 7

    def test_backup_without_key(self, cli, container, write_manifest):
        write_manifest(service("shop", 8001))
        container.settings = container.settings.model_copy(update={"backup_encryption_key": None})

        result = invoke(cli, container, "backup")

        assert result.exit_code == 8
