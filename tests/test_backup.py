#tests\test_backup.py

"""Test snapshot creation, the catalog and retention."""

from datetime import datetime, timedelta, timezone

import pytest

from fleet_engine.backup.coordinator import BackupCoordinator
from fleet_engine.backup.crypto import SnapshotCipher
from fleet_engine.backup.exporters import (
    CacheExporter,
    DatabaseExporter,
    DirectoryExporter,
    ResourceExporter,
)
from fleet_engine.backup.snapshot import SnapshotStore
from fleet_engine.core.errors import BackupError, LockTimeoutError
from fleet_engine.manifest.schema import BackupPolicy


NOW = datetime(2026, 6, 1, 3, 0, tzinfo=timezone.utc)


class BrokenExporter(ResourceExporter):
    kind = "cache"

    def logical_names(self):
        return ["redis"]

    def export(self, logical_name, dest):
        dest.write_bytes(b"partial")
        raise OSError("redis-cli: connection refused")

    def restore(self, logical_name, source):
        raise NotImplementedError


class Clock:

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def cipher():
    return SnapshotCipher(SnapshotCipher.generate_key())


@pytest.fixture
def store(settings):
    return SnapshotStore(settings.snapshot_dir)


@pytest.fixture
def config_dirs(settings):
    settings.nginx_sites_dir.mkdir(parents=True)
    (settings.nginx_sites_dir / "fleet-shop.conf").write_text("server { listen 80; }\n")
    (settings.nginx_sites_dir / "default.conf").write_text("unmanaged\n")
    return settings


@pytest.fixture
def exporters(database_admin, cache_admin, config_dirs):
    database_admin.databases["shop"] = b"orders"
    return [
        DirectoryExporter("router_config", "nginx", {"sites": (config_dirs.nginx_sites_dir, "fleet-*.conf")}),
        CacheExporter(cache_admin),
        DatabaseExporter(database_admin, ["shop"]),
    ]


@pytest.fixture
def build_coordinator(store, cipher, host_lock, emitter):
    def _build(exporters, clock=None):
        return BackupCoordinator(
            store=store,
            exporters=exporters,
            cipher=cipher,
            lock=host_lock,
            emitter=emitter,
            clock=clock or Clock(NOW),
        )
    return _build


class TestCreateSnapshot:

    def test_snapshot_contents(self, build_coordinator, exporters, store, cipher, emitter):
        snapshot = build_coordinator(exporters).create_snapshot(BackupPolicy())

        assert snapshot.snapshot_id == "20260601T030000Z"
        assert snapshot.encryption_key_id == cipher.key_id
        assert [r.label for r in snapshot.resources] == [
            "database:shop", "cache:redis", "router_config:nginx",
        ]
        assert [s.snapshot_id for s in store.list()] == [snapshot.snapshot_id]
        assert store.verify(snapshot.snapshot_id) == []
        assert emitter.of_type("snapshot.created")

    def test_payloads_are_encrypted(self, build_coordinator, exporters, store, cipher):
        snapshot = build_coordinator(exporters).create_snapshot(BackupPolicy())
        database = snapshot.resources[0]

        ciphertext = store.read_resource(snapshot.snapshot_id, database)

        assert b"orders" not in ciphertext
        assert cipher.decrypt(ciphertext) == b"PGDMPshoporders"
        assert not list(store.path_for(snapshot.snapshot_id).glob("*.plain"))

    def test_failed_export_leaves_nothing(self, build_coordinator, database_admin, store, settings):
        """Test a snapshot is all-or-nothing."""
        coordinator = build_coordinator([DatabaseExporter(database_admin, ["shop"]), BrokenExporter()])

        with pytest.raises(BackupError):
            coordinator.create_snapshot(BackupPolicy())

        assert store.list() == []
        assert list(settings.snapshot_dir.iterdir()) == []

    def test_failed_export_keeps_older_snapshots(self, build_coordinator, exporters, database_admin, store):
        first = build_coordinator(exporters).create_snapshot(BackupPolicy())

        with pytest.raises(BackupError):
            build_coordinator([BrokenExporter()], Clock(NOW + timedelta(hours=1))).create_snapshot(BackupPolicy())

        assert [s.snapshot_id for s in store.list()] == [first.snapshot_id]

    def test_same_second_ids_are_unique(self, build_coordinator, exporters):
        coordinator = build_coordinator(exporters)

        first = coordinator.create_snapshot(BackupPolicy())
        second = coordinator.create_snapshot(BackupPolicy())

        assert first.snapshot_id != second.snapshot_id

    def test_stale_staging_removed(self, build_coordinator, exporters, store, settings):
        stale = settings.snapshot_dir / ".staging-20260101T000000Z-abc"
        stale.mkdir(parents=True)

        build_coordinator(exporters).create_snapshot(BackupPolicy())

        assert not stale.exists()

    def test_lock_held_elsewhere(self, build_coordinator, exporters, host_lock, store):
        with host_lock.hold("deploy"):
            with pytest.raises(LockTimeoutError):
                build_coordinator(exporters).create_snapshot(BackupPolicy())

        assert store.list() == []


class TestRetention:

    def test_only_expired_snapshot_deleted(self, build_coordinator, exporters, store, emitter):
        """Test eight snapshots aged 1..8 days lose only the 8-day one under a 7-day policy."""
        clock = Clock(NOW)
        coordinator = build_coordinator(exporters, clock)
        policy = BackupPolicy(retention_days=7)

        for age in range(8, 0, -1):
            clock.now = NOW - timedelta(days=age)
            coordinator.create_snapshot(policy)
        assert len(store.list()) == 8

        clock.now = NOW
        latest = coordinator.create_snapshot(policy)

        remaining = store.list()
        assert len(remaining) == 8
        assert min(s.created_at for s in remaining) == NOW - timedelta(days=7)
        assert remaining[-1].snapshot_id == latest.snapshot_id
        deleted = emitter.of_type("snapshot.deleted")
        assert [e.subject for e in deleted] == [(NOW - timedelta(days=8)).strftime("%Y%m%dT%H%M%SZ")]

    def test_failed_snapshot_does_not_prune(self, build_coordinator, exporters, store):
        clock = Clock(NOW - timedelta(days=30))
        build_coordinator(exporters, clock).create_snapshot(BackupPolicy(retention_days=7))

        with pytest.raises(BackupError):
            build_coordinator([BrokenExporter()], Clock(NOW)).create_snapshot(BackupPolicy(retention_days=7))

        assert len(store.list()) == 1

    def test_undeletable_snapshot_kept(self, build_coordinator, exporters, store, emitter, monkeypatch):
        """Test a retention delete that fails leaves the new snapshot committed."""
        clock = Clock(NOW - timedelta(days=30))
        old = build_coordinator(exporters, clock).create_snapshot(BackupPolicy(retention_days=7))

        def refuse(snapshot_id):
            raise PermissionError(13, "Permission denied", snapshot_id)

        monkeypatch.setattr(store, "delete", refuse)

        latest = build_coordinator(exporters, Clock(NOW)).create_snapshot(BackupPolicy(retention_days=7))

        assert [s.snapshot_id for s in store.list()] == [old.snapshot_id, latest.snapshot_id]
        assert emitter.of_type("snapshot.deleted") == []


class TestSnapshotStore:

    def test_get_rejects_hidden_and_nested_ids(self, store):
        assert store.get(".staging-x") is None
        assert store.get("../etc") is None
        assert store.get("missing") is None

    def test_tampered_file_reported(self, build_coordinator, exporters, store):
        snapshot = build_coordinator(exporters).create_snapshot(BackupPolicy())
        path = store.path_for(snapshot.snapshot_id) / snapshot.resources[0].filename
        path.write_bytes(path.read_bytes() + b"x")

        problems = store.verify(snapshot.snapshot_id)

        assert problems == ["database:shop: ciphertext digest mismatch"]

    def test_delete(self, build_coordinator, exporters, store):
        snapshot = build_coordinator(exporters).create_snapshot(BackupPolicy())

        store.delete(snapshot.snapshot_id)

        assert store.list() == []
        assert not store.path_for(snapshot.snapshot_id).exists()


class TestDirectoryExporter:

    def test_restore_replaces_managed_set(self, tmp_path):
        sites = tmp_path / "sites"
        sites.mkdir()
        (sites / "fleet-a.conf").write_text("a1")
        (sites / "other.conf").write_text("keep")
        exporter = DirectoryExporter("router_config", "nginx", {"sites": (sites, "fleet-*.conf")})
        archive = tmp_path / "sites.tar.gz"
        exporter.export("nginx", archive)

        (sites / "fleet-a.conf").write_text("a2")
        (sites / "fleet-b.conf").write_text("b")
        exporter.restore("nginx", archive)

        assert (sites / "fleet-a.conf").read_text() == "a1"
        assert not (sites / "fleet-b.conf").exists()
        assert (sites / "other.conf").read_text() == "keep"
