from typing import Sequence


class ProvisioningError(Exception):
    """Base class for everything the provisioning pipeline refuses to do."""


class ConfigurationError(ProvisioningError):
    """Missing or contradictory configuration, detected before any mutation."""


class InstanceExistsError(ProvisioningError):
    def __init__(self, instance_id: int, kind: str) -> None:
        super().__init__(
            f"{kind.upper()} {instance_id} already exists and will not be reused. "
            "Please choose a different ID."
        )
        self.instance_id = instance_id
        self.kind = kind


class HypervisorCommandError(ProvisioningError):
    """A pct/qm/pvesm/pveam/pvesh invocation exited non-zero."""

    def __init__(self, argv: Sequence[str], returncode: int, stderr: str = "") -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        detail = self.stderr or "no error output"
        super().__init__(f"`{' '.join(self.argv)}` failed with exit code {returncode}: {detail}")


class GuestCommandError(ProvisioningError):
    """A command executed inside the guest failed."""

    def __init__(self, command: str, returncode: int, output: str = "") -> None:
        self.command = command
        self.returncode = returncode
        self.output = (output or "").strip()
        super().__init__(
            f"Guest command failed with exit code {returncode}: {command}"
            + (f"\n{self.output}" if self.output else "")
        )


class InstallError(ProvisioningError):
    """An application installer could not finish."""


class InventoryError(ProvisioningError):
    pass
