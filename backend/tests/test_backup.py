import gzip
import os
import shutil

import pytest

from shop.services import backup_service
from shop.services.backup_service import AUTO_PREFIX, BackupError

from conftest import auth_headers


@pytest.fixture(autouse=True)
def empty_backup_dir():
    shutil.rmtree(backup_service.get_backup_dir(), ignore_errors=True)
    yield backup_service.get_backup_dir()


async def test_create_list_and_delete_backup(empty_backup_dir):
    info = await backup_service.create_backup()
    assert info["filename"].startswith("backup_")
    assert info["filename"].endswith(".db")
    assert not info["auto"]

    backups = backup_service.list_backups()
    assert [b["filename"] for b in backups] == [info["filename"]]

    backup_service.delete_backup(info["filename"])
    assert backup_service.list_backups() == []


async def test_compressed_backup(empty_backup_dir):
    info = await backup_service.create_backup(compress=True, auto=True)
    assert info["filename"].startswith(AUTO_PREFIX)
    assert info["compressed"]


def test_path_traversal_is_rejected(empty_backup_dir):
    with pytest.raises(BackupError) as exc_info:
        backup_service.resolve_backup_path("../test.db")
    assert exc_info.value.status_code == 403

    with pytest.raises(BackupError) as exc_info:
        backup_service.resolve_backup_path("..%2Ftest.db")
    assert exc_info.value.status_code == 403


def test_missing_backup_is_404(empty_backup_dir):
    with pytest.raises(BackupError) as exc_info:
        backup_service.resolve_backup_path("backup_20240101_000000.db")
    assert exc_info.value.status_code == 404


def test_cleanup_keeps_latest_auto_backups(empty_backup_dir):
    for i in range(5):
        path = os.path.join(empty_backup_dir, f"{AUTO_PREFIX}2024010{i}_030000.db")
        with open(path, "wb") as f:
            f.write(b"x")
        os.utime(path, (1_700_000_000 + i, 1_700_000_000 + i))

    assert backup_service.cleanup_auto_backups(keep_count=2) == 3
    remaining = sorted(os.listdir(empty_backup_dir))
    assert remaining == [f"{AUTO_PREFIX}20240103_030000.db", f"{AUTO_PREFIX}20240104_030000.db"]


async def test_restore_requires_confirmation(client, admin):
    response = await client.post(
        "/api/admin/backup/restore", json={"filename": "backup_x.db"}, headers=auth_headers(admin))
    assert response.status_code == 400


async def test_backup_api_create_and_list(client, admin):
    response = await client.post("/api/admin/backup", json={"compress": False}, headers=auth_headers(admin))
    assert response.status_code == 200
    filename = response.json()["backup"]["filename"]

    response = await client.get("/api/admin/backup", headers=auth_headers(admin))
    assert filename in [b["filename"] for b in response.json()["backups"]]

    response = await client.delete(f"/api/admin/backup/{filename}", headers=auth_headers(admin))
    assert response.status_code == 200


async def test_backup_api_requires_admin(client, customer):
    response = await client.get("/api/admin/backup", headers=auth_headers(customer))
    assert response.status_code == 403


def test_compressed_postgres_restore_keeps_plain_backup(empty_backup_dir, monkeypatch):
    os.makedirs(empty_backup_dir, exist_ok=True)
    plain = os.path.join(empty_backup_dir, "backup_2024-01-01_00-00-00.sql")
    with open(plain, "w") as f:
        f.write("-- plain\n")
    with gzip.open(plain + ".gz", "wb") as f:
        f.write(b"-- compressed\n")

    restored = []

    def fake_restore(source):
        with open(source) as f:
            restored.append((source, f.read()))

    monkeypatch.setattr(backup_service, "_restore_postgres", fake_restore)
    backup_service._restore_postgres_file(plain + ".gz")

    [(source, content)] = restored
    assert content == "-- compressed\n"
    assert source != plain
    assert not os.path.exists(source)
    with open(plain) as f:
        assert f.read() == "-- plain\n"
