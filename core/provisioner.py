import logging
import time
from typing import List, Optional, Tuple, Union

from config.settings import DEFAULT_SSH_PUBLIC_KEY, START_SETTLE_SECONDS
from core.console import Console
from core.credentials import generate_password, record_credentials
from core.errors import (
    ConfigurationError,
    HypervisorCommandError,
    InstanceExistsError,
    ProvisioningError,
)
from core.guest import ConnectionInfo, ContainerExecutor, GuestExecutor, SshExecutor
from core.logger import log_event
from core.metrics import record_provision, record_readiness_timeout
from core.pve_cli import PveCli
from core.readiness import discover_container_ip, discover_vm_ip, wait_for_container
from core.storage import VmImage, resolve_container_template, resolve_vm_image, select_storage
from installers.base import Installer
from schemas.provision_schema import (
    UNKNOWN_IP,
    InstanceKind,
    ProvisioningRequest,
    ProvisioningResult,
    ReusePolicy,
)


def kind_label(kind: InstanceKind) -> str:
    return "Container" if kind == InstanceKind.LXC else "VM"


def build_container_options(request: ProvisioningRequest, rootfs_storage: str) -> List[str]:
    """Ordered `pct create` options, one token per argv element."""
    options = [
        "--hostname", request.hostname,
        "--cores", str(request.cores),
        "--memory", str(request.memory_mb),
        "--swap", str(request.swap_mb),
        "--rootfs", f"{rootfs_storage}:{request.disk_size_number()}",
        "--net0", request.network_option(),
        "--unprivileged", "1" if request.unprivileged else "0",
        "--onboot", "1" if request.onboot else "0",
    ]
    if request.password:
        options += ["--password", request.password]
    if request.ssh_key:
        options += ["--ssh-public-keys", request.ssh_key]
    if request.nesting:
        # keyctl is only accepted for unprivileged containers
        features = "keyctl=1,nesting=1" if request.unprivileged else "nesting=1"
        options += ["--features", features]
    if request.tags:
        options += ["--tags", request.tag_string()]
    return options


def build_vm_options(request: ProvisioningRequest, disk_storage: str, image: VmImage) -> List[str]:
    """Ordered `qm create` options, cloud-init included."""
    options = [
        "--name", request.hostname,
        "--memory", str(request.memory_mb),
        "--cores", str(request.cores),
        "--net0", f"virtio,bridge={request.bridge}",
        "--scsihw", request.scsi_controller,
        "--ostype", request.os_type,
        "--bios", request.bios,
        "--machine", request.machine,
        "--agent", "enabled=1",
        "--onboot", "1" if request.onboot else "0",
    ]
    if image.kind == "disk":
        options += ["--scsi0", f"{disk_storage}:0,import-from={image.source}"]
    else:
        options += ["--scsi0", f"{disk_storage}:{request.disk_size_number()}"]
    if image.kind == "iso":
        options += ["--ide2", f"{image.source},media=cdrom", "--boot", "order=scsi0;ide2"]
    else:
        options += ["--boot", "order=scsi0"]

    if request.cloud_init:
        options += ["--ide0", f"{disk_storage}:cloudinit", "--ciuser", "root"]
        if request.password:
            options += ["--cipassword", request.password]
        if request.ssh_key:
            options += ["--sshkeys", request.ssh_key]
        options += ["--ipconfig0", request.ipconfig_option(), "--nameserver", request.dns]
    if request.tags:
        options += ["--tags", request.tag_string()]
    return options


def useful_commands(kind: InstanceKind, instance_id: int, ip: Optional[str]) -> List[str]:
    if kind == InstanceKind.LXC:
        return [
            f"Start container:   pct start {instance_id}",
            f"Stop container:    pct stop {instance_id}",
            f"Console:           pct enter {instance_id}",
            f"Execute command:   pct exec {instance_id} -- <command>",
            f"Destroy container: pct destroy {instance_id}",
        ]
    return [
        f"Start VM:      qm start {instance_id}",
        f"Stop VM:       qm stop {instance_id}",
        f"Console:       qm terminal {instance_id}",
        f"SSH:           ssh root@{ip or '<VM_IP>'}",
        f"Status:        qm status {instance_id}",
        f"Destroy VM:    qm destroy {instance_id}",
    ]


class Provisioner:
    """
    Turns one ProvisioningRequest into a running guest:

        validate & default -> existence check -> image resolution -> create
        -> start -> readiness poll -> install handoff -> report

    Everything up to and including `start` is fail-fast and raises a
    ProvisioningError. Once the guest runs, problems (no address, no SSH,
    failed installer) become warnings on the result instead.
    """

    def __init__(self, pve: Optional[PveCli] = None, console: Optional[Console] = None) -> None:
        self.pve = pve or PveCli()
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def provision(
        self,
        request: ProvisioningRequest,
        installer: Optional[Installer] = None,
    ) -> ProvisioningResult:
        started = time.time()
        try:
            result = self._provision(request, installer)
        except ProvisioningError as e:
            log_event(f"[provision] {request.kind.value} {request.instance_id} failed: {e}")
            record_provision(request.kind.value, "failed", time.time() - started)
            raise
        record_provision(request.kind.value, result.status, time.time() - started)
        return result

    def connect(self, kind: InstanceKind, instance_id: int, ip: Optional[str] = None) -> ConnectionInfo:
        """ConnectionInfo for an instance that already exists, used for updates."""
        label = kind_label(kind)
        if not self.pve.exists(kind, instance_id):
            raise ConfigurationError(f"{label} {instance_id} does not exist")

        if kind == InstanceKind.LXC:
            executor: GuestExecutor = ContainerExecutor(self.pve, instance_id)
        else:
            ip = ip or discover_vm_ip(self.pve, instance_id, self.console)
            if not ip:
                raise ConfigurationError(f"IP address of VM {instance_id} unknown; pass it explicitly")
            executor = SshExecutor(ip)
        return ConnectionInfo(kind, instance_id, str(instance_id), ip, None, executor)

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------
    def _provision(self, request: ProvisioningRequest, installer: Optional[Installer]) -> ProvisioningResult:
        label = kind_label(request.kind)
        warnings: List[str] = []

        self._validate(request, installer, warnings)
        self._print_summary(request, installer)

        existing = self._check_existing(request)
        reused = existing == ReusePolicy.REUSE
        if not reused:
            storage, media = self._prepare(request)
            if existing == ReusePolicy.RECREATE:
                self._destroy_existing(request)
            try:
                self._create(request, storage, media)
            except HypervisorCommandError:
                self.console.error(f"Failed to create {label.lower()}")
                self._rollback(request)
                raise
            self._save_credentials(request, warnings)

        try:
            self._start(request)
        except HypervisorCommandError:
            self.console.error(f"Failed to start {label.lower()}")
            if not reused:
                self._rollback(request)
            raise

        ip = self._wait_ready(request, warnings)
        connection = ConnectionInfo(
            kind=request.kind,
            instance_id=request.instance_id,
            hostname=request.hostname,
            ip=ip,
            password=request.password,
            executor=self._executor(request, ip),
        )

        installed, install_failed = self._install(connection, installer, warnings)

        if install_failed:
            status = "created_with_install_error"
        elif reused:
            status = "reused"
        else:
            status = "created"

        result = ProvisioningResult(
            status=status,
            kind=request.kind,
            instance_id=request.instance_id,
            hostname=request.hostname,
            ip_address=ip or UNKNOWN_IP,
            password=request.password,
            reused=reused,
            installed_app=installed,
            warnings=warnings,
            access=installer.access_lines(connection) if installer and installed else [],
        )
        self._report(result, installer, connection)
        log_event(
            f"[provision] {label} {request.instance_id} finished: status={status}, "
            f"ip={result.ip_address}, app={installed}"
        )
        return result

    def _warn(self, warnings: List[str], message: str) -> None:
        warnings.append(message)
        self.console.warning(message)

    def _validate(
        self,
        request: ProvisioningRequest,
        installer: Optional[Installer],
        warnings: List[str],
    ) -> None:
        if (
            installer is not None
            and installer.requires_container_runtime
            and request.kind == InstanceKind.LXC
            and not request.nesting
        ):
            raise ConfigurationError(
                f"{installer.title} runs on Docker and needs nesting inside an LXC container. "
                "Enable it explicitly (NESTING=1 / --nesting) or provision a VM instead, "
                "which is what Proxmox recommends for container runtimes."
            )

        if request.password is None:
            request.password = generate_password()
            self.console.info(f"Generated random password: {request.password}")

        if request.ip and not request.gateway:
            self._warn(warnings, "IP provided but no gateway. Instance may have network issues.")
            self.console.info("Please set GATEWAY environment variable")
        elif not request.ip:
            self.console.info(f"No static IP set. {kind_label(request.kind)} will use DHCP.")

        if request.kind == InstanceKind.LXC and not request.unprivileged:
            self._warn(
                warnings,
                "Privileged container requested: root inside the guest maps to root on the host.",
            )

        if request.kind == InstanceKind.VM and request.cloud_init and not request.ssh_key:
            if DEFAULT_SSH_PUBLIC_KEY.is_file():
                request.ssh_key = str(DEFAULT_SSH_PUBLIC_KEY)
                self.console.info(f"Using default SSH key: {DEFAULT_SSH_PUBLIC_KEY}")

    def _print_summary(self, request: ProvisioningRequest, installer: Optional[Installer]) -> None:
        label = kind_label(request.kind)
        info = self.console.info
        info("=========================================")
        info(f"Proxmox {request.kind.value.upper()} Setup - {request.app}")
        info("=========================================")
        info(f"{label} ID: {request.instance_id}")
        info(f"Hostname: {request.hostname}")
        info(f"Template: {request.template or 'none (empty disk)'}")
        info(f"CPU Cores: {request.cores}")
        info(f"RAM: {request.memory_mb}MB")
        info(f"Disk: {request.disk_size}")
        if request.kind == InstanceKind.LXC:
            info(f"Unprivileged: {int(request.unprivileged)}  Nesting: {int(request.nesting)}")
        else:
            info(f"OS Type: {request.os_type}  Cloud-Init: {int(request.cloud_init)}")
        if installer:
            info(f"Application installer: {installer.title}")
        info("=========================================")

    def _check_existing(self, request: ProvisioningRequest) -> Optional[ReusePolicy]:
        """
        None when the ID is free, REUSE or RECREATE for an existing instance.
        Raises when the instance must not be touched. Nothing is destroyed here.
        """
        kind, instance_id = request.kind, request.instance_id
        label = kind_label(kind)
        if not self.pve.exists(kind, instance_id):
            return None

        self.console.warning(f"{label} {instance_id} already exists")
        policy = request.reuse_policy
        if policy == ReusePolicy.PROMPT:
            accepted = self.console.confirm(f"Do you want to use the existing {label.lower()}?")
            policy = ReusePolicy.REUSE if accepted else ReusePolicy.FAIL

        if policy == ReusePolicy.FAIL:
            self.console.error(f"Aborted. Please choose a different {label.lower()} ID.")
            raise InstanceExistsError(instance_id, kind.value)

        if policy == ReusePolicy.RECREATE:
            self.console.warning(f"{label} {instance_id} will be destroyed and recreated")
            return ReusePolicy.RECREATE

        self.console.info(f"Using existing {label.lower()} {instance_id}")
        return ReusePolicy.REUSE

    def _prepare(self, request: ProvisioningRequest) -> Tuple[str, Union[str, VmImage]]:
        """Resolve the target storage pool and the template or VM image."""
        if request.kind == InstanceKind.LXC:
            storage = select_storage(self.pve, self.console, "rootdir", request.storage)
            return storage, resolve_container_template(self.pve, self.console, request)
        storage = select_storage(self.pve, self.console, "images", request.storage)
        return storage, resolve_vm_image(self.pve, self.console, request)

    def _destroy_existing(self, request: ProvisioningRequest) -> None:
        kind, instance_id = request.kind, request.instance_id
        label = kind_label(kind)
        self.console.warning(f"Destroying existing {label.lower()} {instance_id} to recreate it")
        if self.pve.status(kind, instance_id) == "running":
            self.pve.stop(kind, instance_id)
        self.pve.destroy(kind, instance_id)
        log_event(f"[provision] Destroyed existing {label} {instance_id} for recreation")

    def _create(self, request: ProvisioningRequest, storage: str, media: Union[str, VmImage]) -> None:
        label = kind_label(request.kind)
        if request.kind == InstanceKind.LXC:
            self.console.info(f"Creating LXC container {request.instance_id}...")
            self.pve.create_container(request.instance_id, media, build_container_options(request, storage))
        else:
            self.console.info(f"Creating VM {request.instance_id}...")
            self.pve.create_vm(request.instance_id, build_vm_options(request, storage, media))
            if media.kind == "disk":
                self.pve.resize_disk(request.instance_id, "scsi0", request.disk_size)
            elif media.kind == "iso":
                self.console.info(
                    "Note: This is an ISO. You'll need to install the OS manually "
                    "or use a cloud-init compatible image."
                )
        self.console.ok(f"{label} {request.instance_id} created successfully")
        log_event(f"[provision] Created {label} {request.instance_id} ({request.hostname})")

    def _save_credentials(self, request: ProvisioningRequest, warnings: List[str]) -> None:
        if not request.password:
            return
        try:
            path = record_credentials(request.hostname, request.password)
        except OSError as e:
            self._warn(warnings, f"Could not save credentials: {e}")
            return
        self.console.info(f"Credentials saved to: {path}")

    def _rollback(self, request: ProvisioningRequest) -> None:
        """Destroy an instance this run created, when configured to."""
        kind, instance_id = request.kind, request.instance_id
        label = kind_label(kind)
        if not request.rollback_on_failure:
            self.console.warning(
                f"Leaving {label.lower()} {instance_id} in place; remove it with "
                f"`{'pct' if kind == InstanceKind.LXC else 'qm'} destroy {instance_id}`"
            )
            return
        try:
            if not self.pve.exists(kind, instance_id):
                return
            if self.pve.status(kind, instance_id) == "running":
                self.pve.stop(kind, instance_id)
            self.pve.destroy(kind, instance_id)
            self.console.warning(f"Rolled back: {label.lower()} {instance_id} destroyed")
            log_event(f"[provision] Rolled back {label} {instance_id}")
        except HypervisorCommandError as e:
            self.console.error(f"Rollback of {label.lower()} {instance_id} failed: {e}")

    def _start(self, request: ProvisioningRequest) -> None:
        kind, instance_id = request.kind, request.instance_id
        label = kind_label(kind)
        if self.pve.status(kind, instance_id) == "running":
            self.console.info(f"{label} {instance_id} is already running")
            return
        self.console.info(f"Starting {label.lower()} {instance_id}...")
        self.pve.start(kind, instance_id)
        self.console.ok(f"{label} {instance_id} started")
        time.sleep(START_SETTLE_SECONDS)

    def _wait_ready(self, request: ProvisioningRequest, warnings: List[str]) -> Optional[str]:
        kind, instance_id = request.kind, request.instance_id

        if kind == InstanceKind.LXC:
            self.console.info("Waiting for container to be ready...")
            if not wait_for_container(self.pve, instance_id):
                record_readiness_timeout(kind.value, "loopback")
                self._warn(warnings, f"Container {instance_id} did not answer a loopback ping in time.")
            ip = request.address or discover_container_ip(self.pve, instance_id, self.console)
            hint = f"pct exec {instance_id} -- ip -4 addr show eth0"
        else:
            self.console.info("Waiting for VM to boot and get IP address...")
            ip = request.address or discover_vm_ip(self.pve, instance_id, self.console)
            hint = f"qm guest cmd {instance_id} network-get-interfaces"

        if ip:
            self.console.info(f"Detected IP: {ip}")
        else:
            record_readiness_timeout(kind.value, "address")
            self._warn(warnings, "Could not automatically detect IP. You may need to check manually.")
            self.console.info(f"Check the address in the Proxmox web interface or with: {hint}")
        return ip

    def _executor(self, request: ProvisioningRequest, ip: Optional[str]) -> Optional[GuestExecutor]:
        if request.kind == InstanceKind.LXC:
            return ContainerExecutor(self.pve, request.instance_id)
        if ip:
            return SshExecutor(ip, password=request.password)
        return None

    def _install(
        self,
        connection: ConnectionInfo,
        installer: Optional[Installer],
        warnings: List[str],
    ) -> Tuple[Optional[str], bool]:
        """Returns (installed app name, whether the install step failed)."""
        label = kind_label(connection.kind)
        if installer is None:
            self.console.info("No application installer registered.")
            if connection.kind == InstanceKind.LXC:
                self.console.info("You can now execute commands in the container using:")
                self.console.info(f"  pct exec {connection.instance_id} -- <command>")
            else:
                self.console.info("VM is ready for manual configuration or Docker setup.")
            return None, False

        if connection.executor is None or (installer.needs_address and not connection.ip):
            self._warn(warnings, f"IP not available. Cannot run automated {installer.title} installation.")
            self.console.info("Configure the instance manually or re-run with a static IP.")
            return None, True

        if isinstance(connection.executor, SshExecutor):
            self.console.info("Waiting for SSH to be ready...")
            if not connection.executor.wait_ready():
                record_readiness_timeout(connection.kind.value, "ssh")
                self._warn(warnings, f"Could not connect to {label} {connection.instance_id} via SSH.")
                self.console.info(f"Run the {installer.title} installation manually once SSH is up.")
                return None, True

        self.console.info(f"Running {installer.title} installation...")
        try:
            installer.install_into(connection)
        except Exception as e:  # noqa: BLE001
            log_event(f"[provision] {installer.title} installation raised {type(e).__name__}: {e}", logging.ERROR)
            self._warn(warnings, f"{installer.title} installation failed: {e}")
            self.console.info(
                f"The {label.lower()} is kept running; fix the problem and re-run the "
                f"installation inside {label.lower()} {connection.instance_id}."
            )
            return None, True
        return installer.name, False

    def _report(
        self,
        result: ProvisioningResult,
        installer: Optional[Installer],
        connection: ConnectionInfo,
    ) -> None:
        label = kind_label(result.kind)
        console = self.console
        console.ok(f"{label} {result.instance_id} is ready")
        console.echo()
        console.info(f"{label} Details:")
        console.info(f"  {label} ID: {result.instance_id}")
        console.info(f"  Hostname: {result.hostname}")
        console.info(f"  IP Address: {result.ip_address}")
        console.info(f"  Root Password: {result.password or '(SSH key only)'}")

        if result.access:
            console.echo()
            console.info(f"{installer.title} Details:")
            for line in result.access:
                console.info(f"  {line}")
            for line in installer.management_lines(connection):
                console.echo(f"  {line}")

        for warning in result.warnings:
            console.warning(warning)

        console.ok("Setup completed!")
        console.echo()
        console.info("Useful commands:")
        for line in useful_commands(result.kind, result.instance_id, connection.ip):
            console.echo(f"  {line}")
