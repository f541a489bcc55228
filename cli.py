from pathlib import Path
from typing import Any, Dict, Optional

import typer
from rich.table import Table

from core.console import Console
from core.errors import ProvisioningError
from core.inventory import InventoryStore
from core.provisioner import Provisioner
from core.pve_cli import PveCli
from core.request_loader import load_request
from installers.registry import available_installers, get_installer
from schemas.provision_schema import InstanceKind, ReusePolicy

app = typer.Typer(
    name="pve-provision",
    help="Provision Proxmox LXC containers and VMs, and keep an LXC inventory",
    add_completion=False,
)
inventory_app = typer.Typer(help="Scan and query the LXC inventory")
app.add_typer(inventory_app, name="inventory")

APP_HELP = f"Application to install ({', '.join(available_installers())})"


def _fail(console: Console, error: ProvisioningError) -> None:
    console.error(str(error))
    raise typer.Exit(1) from error


def _provision(
    kind: InstanceKind,
    app_name: Optional[str],
    overrides: Dict[str, Any],
    compose_file: Optional[Path],
    json_output: bool,
) -> None:
    console = Console()
    pve = PveCli()
    try:
        installer = None
        if app_name:
            options = {"compose_file": compose_file} if compose_file else {}
            installer = get_installer(app_name, console, **options)
        request = load_request(
            kind,
            overrides=overrides,
            app_defaults=installer.app_defaults(kind) if installer else None,
            pve=pve,
        )
        result = Provisioner(pve, console).provision(request, installer)
    except ProvisioningError as e:
        _fail(console, e)
        return

    if json_output:
        typer.echo(result.model_dump_json(indent=2))


def _overrides(**values: Any) -> Dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


@app.command()
def lxc(
    app_name: Optional[str] = typer.Argument(None, metavar="APP", help=APP_HELP),
    ctid: Optional[str] = typer.Option(None, "--id", help="Container ID, or 'auto' for the next free one"),
    hostname: Optional[str] = typer.Option(None, "--hostname"),
    cores: Optional[int] = typer.Option(None, "--cores"),
    memory: Optional[int] = typer.Option(None, "--memory", help="RAM in MB"),
    swap: Optional[int] = typer.Option(None, "--swap", help="Swap in MB"),
    disk: Optional[str] = typer.Option(None, "--disk", help="Root filesystem size, e.g. 8G"),
    storage: Optional[str] = typer.Option(None, "--storage"),
    template_storage: Optional[str] = typer.Option(None, "--template-storage"),
    template: Optional[str] = typer.Option(None, "--template"),
    password: Optional[str] = typer.Option(None, "--password"),
    ssh_key: Optional[str] = typer.Option(None, "--ssh-key", help="Public key file"),
    ip: Optional[str] = typer.Option(None, "--ip", help="Static IP with prefix, e.g. 192.168.1.100/24"),
    gateway: Optional[str] = typer.Option(None, "--gateway"),
    bridge: Optional[str] = typer.Option(None, "--bridge"),
    tags: Optional[str] = typer.Option(None, "--tags"),
    nesting: Optional[bool] = typer.Option(None, "--nesting/--no-nesting"),
    unprivileged: Optional[bool] = typer.Option(None, "--unprivileged/--privileged"),
    onboot: Optional[bool] = typer.Option(None, "--onboot/--no-onboot"),
    reuse: Optional[ReusePolicy] = typer.Option(None, "--reuse", help="What to do when the ID is taken"),
    rollback: Optional[bool] = typer.Option(None, "--rollback/--no-rollback"),
    compose_file: Optional[Path] = typer.Option(None, "--compose-file", exists=True, dir_okay=False),
    json_output: bool = typer.Option(False, "--json", help="Print the result as JSON"),
):
    """Create and start an LXC container, optionally installing APP into it."""
    overrides = _overrides(
        instance_id=ctid,
        hostname=hostname,
        cores=cores,
        memory_mb=memory,
        swap_mb=swap,
        disk_size=disk,
        storage=storage,
        template_storage=template_storage,
        template=template,
        password=password,
        ssh_key=ssh_key,
        ip=ip,
        gateway=gateway,
        bridge=bridge,
        tags=tags,
        nesting=nesting,
        unprivileged=unprivileged,
        onboot=onboot,
        reuse_policy=reuse,
        rollback_on_failure=rollback,
    )
    _provision(InstanceKind.LXC, app_name, overrides, compose_file, json_output)


@app.command()
def vm(
    app_name: Optional[str] = typer.Argument(None, metavar="APP", help=APP_HELP),
    vmid: Optional[str] = typer.Option(None, "--id", help="VM ID, or 'auto' for the next free one"),
    hostname: Optional[str] = typer.Option(None, "--hostname"),
    cores: Optional[int] = typer.Option(None, "--cores"),
    memory: Optional[int] = typer.Option(None, "--memory", help="RAM in MB"),
    disk: Optional[str] = typer.Option(None, "--disk", help="Disk size, e.g. 32G"),
    storage: Optional[str] = typer.Option(None, "--storage"),
    template_storage: Optional[str] = typer.Option(None, "--iso-storage"),
    template: Optional[str] = typer.Option(None, "--image", help="ISO or cloud image (volume id or path)"),
    password: Optional[str] = typer.Option(None, "--password"),
    ssh_key: Optional[str] = typer.Option(None, "--ssh-key", help="Public key file"),
    ip: Optional[str] = typer.Option(None, "--ip", help="Static IP with prefix, e.g. 192.168.1.100/24"),
    gateway: Optional[str] = typer.Option(None, "--gateway"),
    bridge: Optional[str] = typer.Option(None, "--bridge"),
    tags: Optional[str] = typer.Option(None, "--tags"),
    cloud_init: Optional[bool] = typer.Option(None, "--cloud-init/--no-cloud-init"),
    onboot: Optional[bool] = typer.Option(None, "--onboot/--no-onboot"),
    reuse: Optional[ReusePolicy] = typer.Option(None, "--reuse", help="What to do when the ID is taken"),
    rollback: Optional[bool] = typer.Option(None, "--rollback/--no-rollback"),
    compose_file: Optional[Path] = typer.Option(None, "--compose-file", exists=True, dir_okay=False),
    json_output: bool = typer.Option(False, "--json", help="Print the result as JSON"),
):
    """Create and start a QEMU VM, optionally installing APP into it over SSH."""
    overrides = _overrides(
        instance_id=vmid,
        hostname=hostname,
        cores=cores,
        memory_mb=memory,
        disk_size=disk,
        storage=storage,
        template_storage=template_storage,
        template=template,
        password=password,
        ssh_key=ssh_key,
        ip=ip,
        gateway=gateway,
        bridge=bridge,
        tags=tags,
        cloud_init=cloud_init,
        onboot=onboot,
        reuse_policy=reuse,
        rollback_on_failure=rollback,
    )
    _provision(InstanceKind.VM, app_name, overrides, compose_file, json_output)


@app.command()
def update(
    app_name: str = typer.Argument(..., metavar="APP", help=APP_HELP),
    kind: InstanceKind = typer.Option(InstanceKind.LXC, "--kind"),
    instance_id: int = typer.Option(..., "--id"),
    ip: Optional[str] = typer.Option(None, "--ip", help="Guest address (VMs only)"),
):
    """Update APP inside an existing container or VM."""
    console = Console()
    try:
        installer = get_installer(app_name, console)
        connection = Provisioner(PveCli(), console).connect(kind, instance_id, ip)
        installer.update_in(connection)
    except ProvisioningError as e:
        _fail(console, e)


@app.command("next-id")
def next_id():
    """Print the next free instance ID of the cluster."""
    console = Console()
    try:
        typer.echo(PveCli().next_id())
    except ProvisioningError as e:
        _fail(console, e)


@inventory_app.command("update")
def inventory_update():
    """Scan all LXC containers and rewrite the JSON and CSV inventory."""
    console = Console()
    store = InventoryStore(PveCli(), console)
    try:
        snapshot = store.update()
    except ProvisioningError as e:
        _fail(console, e)
        return
    console.info(
        f"Total: {snapshot.total_containers} | Running: {snapshot.summary.running} | "
        f"Stopped: {snapshot.summary.stopped}"
    )


@inventory_app.command("show")
def inventory_show(json_output: bool = typer.Option(False, "--json", help="Output as JSON")):
    """Display the current inventory."""
    console = Console()
    try:
        snapshot = InventoryStore(console=console).load()
    except ProvisioningError as e:
        _fail(console, e)
        return

    if json_output:
        typer.echo(snapshot.model_dump_json(indent=2))
        return

    table = Table(title=f"LXC Inventory ({snapshot.generated_at})")
    table.add_column("CTID", justify="right", style="cyan", no_wrap=True)
    table.add_column("Hostname", style="green")
    table.add_column("IP Address", style="yellow")
    table.add_column("Status")
    table.add_column("Memory", justify="right")
    table.add_column("Cores", justify="right")
    for c in snapshot.containers:
        table.add_row(
            str(c.ctid),
            c.hostname,
            c.ip_address or "N/A",
            c.status,
            "N/A" if c.memory_mb is None else str(c.memory_mb),
            "N/A" if c.cpu_cores is None else str(c.cpu_cores),
        )
    console.print(table)
    console.echo(
        f"Total: {snapshot.total_containers} | Running: {snapshot.summary.running} | "
        f"Stopped: {snapshot.summary.stopped}"
    )


@inventory_app.command("find")
def inventory_find(term: str = typer.Argument(..., help="IP address, hostname or CTID")):
    """Find containers by IP, hostname or CTID."""
    console = Console()
    console.info(f"Searching for: {term}")
    try:
        matches = InventoryStore(console=console).find(term)
    except ProvisioningError as e:
        _fail(console, e)
        return

    if not matches:
        console.error(f"No container found matching: {term}")
        raise typer.Exit(1)

    for c in matches:
        console.echo()
        console.ok(f"Found container: {c.ctid}")
        console.echo(f"Hostname: {c.hostname}")
        console.echo(f"IP Address: {c.ip_address or 'N/A'}")
        console.echo(f"Status: {c.status}")
        console.echo(f"Memory: {c.memory_mb} MB")
        console.echo(f"CPU Cores: {c.cpu_cores}")
        console.echo(f"Storage: {c.storage}")
        console.echo(f"Tags: {c.tags}")
        console.echo(f"Unprivileged: {int(c.unprivileged)}")


if __name__ == "__main__":
    app()
