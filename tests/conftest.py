"""Shared fixtures: no test sleeps, writes to $HOME or talks to a real Proxmox host."""

import io

import pytest

from core.console import Console
from tests.fakes import PVEAM_LIST_LOCAL, PVESM_STATUS, FakePveCli


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr("time.sleep", lambda seconds: None)


@pytest.fixture(autouse=True)
def isolated_paths(monkeypatch, tmp_path):
    monkeypatch.setattr("core.credentials.CREDENTIALS_DIR", tmp_path / "creds")
    monkeypatch.setattr("core.provisioner.DEFAULT_SSH_PUBLIC_KEY", tmp_path / "missing.pub")


@pytest.fixture
def output():
    return io.StringIO()


@pytest.fixture
def console(output):
    return Console(file=output, interactive=False)


@pytest.fixture
def pve():
    """Hypervisor with both default pools and the default Debian template cached."""
    fake = FakePveCli()
    fake.on("pvesm", "status", stdout=PVESM_STATUS)
    fake.on("pveam", "list", "local", stdout=PVEAM_LIST_LOCAL)
    return fake
