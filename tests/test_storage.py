import pytest

from core.errors import ConfigurationError
from core.request_loader import load_request
from core.storage import resolve_container_template, resolve_vm_image, select_storage, template_stem
from schemas.provision_schema import InstanceKind
from tests.fakes import PVESM_STATUS, FakePveCli

AVAILABLE = """\
system          alpine-3.20-default_20240908_amd64.tar.xz
system          debian-12-standard_12.7-1_amd64.tar.zst
system          debian-12-standard_12.2-1_amd64.tar.zst
"""


def request(kind=InstanceKind.LXC, **overrides):
    overrides.setdefault("instance_id", 100)
    return load_request(kind, overrides=overrides, environ={})


def test_template_stem():
    assert template_stem("local:vztmpl/debian-12-standard_12.7-1_amd64.tar.zst") == "debian-12-standard"
    assert template_stem("jammy-server-cloudimg-amd64.img") == "jammy-server-cloudimg-amd64"


class TestSelectStorage:
    def test_preferred_pool(self, pve, console):
        assert select_storage(pve, console, "rootdir", "local-lvm") == "local-lvm"

    def test_single_candidate_replaces_unusable_preference(self, console, output):
        pve = FakePveCli()
        pve.on("pvesm", "status", stdout=PVESM_STATUS.splitlines()[0] + "\nlocal dir active 1 1 1 1%\n")

        assert select_storage(pve, console, "vztmpl", "nas") == "local"
        assert "cannot hold" in output.getvalue()

    def test_first_pool_without_terminal(self, pve, console):
        assert select_storage(pve, console, "images", None) == "local"

    def test_no_pool(self, console, output):
        pve = FakePveCli()
        pve.on("pvesm", "status", stdout=PVESM_STATUS.splitlines()[0] + "\n")

        with pytest.raises(ConfigurationError, match="Unable to detect valid storage location"):
            select_storage(pve, console, "rootdir", None)

        assert "'Container' needs to be selected" in output.getvalue()


class TestContainerTemplate:
    def test_cached_template(self, pve, console):
        template = resolve_container_template(pve, console, request())

        assert template == "local:vztmpl/debian-12-standard_12.7-1_amd64.tar.zst"
        assert pve.commands("pveam", "download") == []

    def test_other_version_of_same_template_cached(self, pve, console):
        wanted = "local:vztmpl/debian-12-standard_12.9-1_amd64.tar.zst"

        template = resolve_container_template(pve, console, request(template=wanted))

        assert template == "local:vztmpl/debian-12-standard_12.7-1_amd64.tar.zst"

    def test_downloads_missing_template(self, console):
        pve = FakePveCli()
        pve.on("pvesm", "status", stdout=PVESM_STATUS)
        pve.on("pveam", "available", stdout=AVAILABLE)

        template = resolve_container_template(pve, console, request())

        assert template == "local:vztmpl/debian-12-standard_12.7-1_amd64.tar.zst"
        assert pve.commands("pveam", "update")
        assert pve.commands("pveam", "download") == [
            ["pveam", "download", "local", "debian-12-standard_12.7-1_amd64.tar.zst"]
        ]

    def test_falls_back_to_newest_matching_template(self, console):
        pve = FakePveCli()
        pve.on("pvesm", "status", stdout=PVESM_STATUS)
        pve.on("pveam", "available", stdout=AVAILABLE)

        template = resolve_container_template(
            pve, console, request(template="local:vztmpl/debian-12-standard_12.0-1_amd64.tar.zst")
        )

        assert template == "local:vztmpl/debian-12-standard_12.7-1_amd64.tar.zst"

    def test_nothing_usable(self, console):
        pve = FakePveCli()
        pve.on("pvesm", "status", stdout=PVESM_STATUS)
        pve.on("pveam", "available", stdout="system  alpine-3.20-default_20240908_amd64.tar.xz\n")

        with pytest.raises(ConfigurationError, match="No usable template"):
            resolve_container_template(pve, console, request(template="local:vztmpl/debian-12-standard_12.7-1_amd64.tar.zst"))

        assert pve.commands("pct", "create") == []


class TestVmImage:
    def test_no_template_means_empty_disk(self, pve, console):
        assert resolve_vm_image(pve, console, request(InstanceKind.VM, instance_id=200)).kind == "none"

    def test_iso_found(self, pve, console):
        pve.on("pvesm", "path", "local:iso/debian-12.iso", stdout="/var/lib/vz/template/iso/debian-12.iso\n")

        image = resolve_vm_image(pve, console, request(InstanceKind.VM, instance_id=200, template="debian-12.iso"))

        assert (image.kind, image.source) == ("iso", "local:iso/debian-12.iso")

    def test_missing_iso_picks_first_available(self, pve, console):
        pve.on("pvesm", "path", returncode=1)
        pve.on("pvesm", "list", "local", "--content", "iso", stdout="Volid Format Type Size\nlocal:iso/ubuntu.iso iso iso 1\n")

        image = resolve_vm_image(pve, console, request(InstanceKind.VM, instance_id=200, template="debian-12.iso"))

        assert image.source == "local:iso/ubuntu.iso"

    def test_missing_iso_without_alternatives(self, pve, console):
        pve.on("pvesm", "path", returncode=1)

        with pytest.raises(ConfigurationError, match="No ISO images"):
            resolve_vm_image(pve, console, request(InstanceKind.VM, instance_id=200, template="debian-12.iso"))

    def test_local_disk_image_path(self, pve, console, tmp_path):
        image_file = tmp_path / "debian-12-genericcloud-amd64.qcow2"
        image_file.write_bytes(b"")

        image = resolve_vm_image(pve, console, request(InstanceKind.VM, instance_id=200, template=str(image_file)))

        assert (image.kind, image.source) == ("disk", str(image_file))
