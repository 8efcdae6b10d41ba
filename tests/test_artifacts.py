from pathlib import Path
import time
from unittest.mock import patch

import diskcache
import pytest

from tfaction.artifacts import (
    ArtifactError,
    ArtifactNotFoundError,
    ArtifactReadError,
    ArtifactWriteError,
    PlanArtifactStore,
)


@pytest.fixture
def store(tmp_path):
    return PlanArtifactStore(tmp_path / "artifacts")


@pytest.fixture
def plan_file(tmp_path):
    path = tmp_path / "work" / "tfplan-network"
    path.parent.mkdir()
    path.write_bytes(b"\x00binary plan\xff")
    return path


def test_key(store):
    assert store.key("network") == "tfplan-network"
    assert PlanArtifactStore("x", prefix="plan").key("dns") == "plan-dns"


def test_save_and_load(store, plan_file, tmp_path):
    assert store.save("network", plan_file) == "tfplan-network"
    assert store.saved_at("network") is not None

    destination = tmp_path / "checkout" / "infra" / "network"
    loaded = store.load("network", destination)

    assert loaded == destination / "tfplan-network"
    assert loaded.read_bytes() == b"\x00binary plan\xff"


def test_save_overwrites(store, plan_file, tmp_path):
    store.save("network", plan_file)
    plan_file.write_bytes(b"second")
    store.save("network", plan_file)

    assert store.load("network", tmp_path / "out").read_bytes() == b"second"


def test_save_missing_file(store, tmp_path):
    with pytest.raises(ArtifactWriteError):
        store.save("network", tmp_path / "nope")


def test_save_unreadable_file(store, plan_file):
    with patch.object(Path, "read_bytes", side_effect=PermissionError("denied")):
        with pytest.raises(ArtifactWriteError) as excinfo:
            store.save("network", plan_file)
    assert "denied" in str(excinfo.value)
    assert store.saved_at("network") is None


def test_load_missing(store, tmp_path):
    with pytest.raises(ArtifactNotFoundError) as excinfo:
        store.load("network", tmp_path)
    assert isinstance(excinfo.value, ArtifactError)
    assert store.saved_at("network") is None


def test_load_expired(tmp_path, plan_file):
    store = PlanArtifactStore(tmp_path / "artifacts", retention_days=0.1 / 86400)
    store.save("network", plan_file)
    time.sleep(0.3)
    with pytest.raises(ArtifactNotFoundError):
        store.load("network", tmp_path / "out")


def test_load_payload_without_plan(store, tmp_path):
    with diskcache.Cache(str(store.directory)) as cache:
        cache.set(store.key("network"), {"files": {"other": b""}})

    with pytest.raises(ArtifactReadError):
        store.load("network", tmp_path / "out")


def test_load_unwritable_destination(store, plan_file, tmp_path):
    store.save("network", plan_file)
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")

    with pytest.raises(ArtifactReadError):
        store.load("network", blocker)


def test_discard_and_clear(store, plan_file):
    store.save("network", plan_file)
    store.save("dns", plan_file)

    assert store.discard("network")
    assert not store.discard("network")
    assert store.saved_at("network") is None

    assert store.clear() == 1
    assert store.saved_at("dns") is None


def test_projects_do_not_collide(store, tmp_path):
    a = tmp_path / "a"
    a.write_bytes(b"a")
    b = tmp_path / "b"
    b.write_bytes(b"b")

    store.save("network", a)
    store.save("dns", b)

    assert store.load("network", tmp_path / "x").read_bytes() == b"a"
    assert store.load("dns", tmp_path / "y").read_bytes() == b"b"
