import subprocess

import pytest

from core.errors import HypervisorCommandError
from core.pve_cli import PveCli, _redact
from schemas.provision_schema import InstanceKind
from tests.fakes import PVESM_STATUS, FakePveCli

PCT_LIST = """\
VMID       Status     Lock         Name
100        running                 metabase
101        stopped                 vault
"""

PCT_CONFIG = """\
arch: amd64
cores: 2
hostname: metabase
memory: 2048
net0: name=eth0,bridge=vmbr0,hwaddr=BC:24:11:00:00:01,ip=dhcp,type=veth
rootfs: local-lvm:vm-100-disk-0,size=8G
tags: analytics;bi
unprivileged: 1

[snap1]
hostname: old
"""


class TestRun:
    def test_argv_list_without_shell(self, mocker):
        run = mocker.patch(
            "core.pve_cli.subprocess.run",
            return_value=subprocess.CompletedProcess([], 0, "status: running\n", ""),
        )

        assert PveCli().status(InstanceKind.VM, 200) == "running"

        args, kwargs = run.call_args
        assert args[0] == ["qm", "status", "200"]
        assert kwargs["capture_output"] is True
        assert "shell" not in kwargs

    def test_non_zero_exit_raises(self, mocker):
        mocker.patch(
            "core.pve_cli.subprocess.run",
            return_value=subprocess.CompletedProcess([], 2, "", "unable to start\n"),
        )

        with pytest.raises(HypervisorCommandError) as exc:
            PveCli().start(InstanceKind.LXC, 100)

        assert exc.value.returncode == 2
        assert exc.value.stderr == "unable to start"
        assert exc.value.argv == ["pct", "start", "100"]

    def test_missing_binary(self, mocker):
        mocker.patch("core.pve_cli.subprocess.run", side_effect=FileNotFoundError("pct"))

        with pytest.raises(HypervisorCommandError) as exc:
            PveCli().exists(InstanceKind.LXC, 100)

        assert exc.value.returncode == 127


def test_redact_hides_passwords():
    assert _redact(["pct", "create", "100", "--password", "hunter2", "--cores", "2"]) == (
        "pct create 100 --password ******** --cores 2"
    )


def test_exists_follows_status_exit_code():
    pve = FakePveCli(containers={100: "stopped"})

    assert pve.exists(InstanceKind.LXC, 100) is True
    assert pve.exists(InstanceKind.LXC, 101) is False


def test_vm_destroy_purges():
    pve = FakePveCli(vms={200: "stopped"})

    pve.destroy(InstanceKind.VM, 200)

    assert pve.calls[-1] == ["qm", "destroy", "200", "--purge"]


def test_list_storages_keeps_active_pools():
    pve = FakePveCli()
    pve.on(
        "pvesm", "status",
        stdout=PVESM_STATUS + "nas          nfs   inactive      0   0   0   0.00%\n",
    )

    pools = pve.list_storages("rootdir")

    assert [p["name"] for p in pools] == ["local", "local-lvm"]
    assert pve.calls[-1] == ["pvesm", "status", "-content", "rootdir"]


def test_list_containers_and_config():
    pve = FakePveCli()
    pve.on("pct", "list", stdout=PCT_LIST)
    pve.on("pct", "config", "100", stdout=PCT_CONFIG)
    pve.on("pct", "config", "101", returncode=2)

    assert pve.list_containers() == [100, 101]
    config = pve.container_config(100)
    assert config["hostname"] == "metabase"
    assert config["rootfs"] == "local-lvm:vm-100-disk-0,size=8G"
    assert pve.container_config(101) is None


def test_next_id():
    pve = FakePveCli()
    pve.on("pvesh", "get", "/cluster/nextid", stdout='"104"\n')

    assert pve.next_id() == 104


def test_guest_agent_not_running():
    pve = FakePveCli()
    pve.on("qm", "guest", "cmd", returncode=255, stderr="QEMU guest agent is not running")

    assert pve.guest_network_interfaces(200) is None


def test_available_templates_takes_name_column():
    pve = FakePveCli()
    pve.on(
        "pveam", "available",
        stdout="system          debian-12-standard_12.7-1_amd64.tar.zst\nsystem          ubuntu-24.04-standard_24.04-2_amd64.tar.zst\n",
    )

    assert pve.available_templates() == [
        "debian-12-standard_12.7-1_amd64.tar.zst",
        "ubuntu-24.04-standard_24.04-2_amd64.tar.zst",
    ]
