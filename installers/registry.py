from typing import Dict, List, Optional, Type

from core.console import Console
from core.errors import ConfigurationError
from installers.base import Installer
from installers.docker import DockerInstaller
from installers.metabase import MetabaseInstaller
from installers.supabase import SupabaseInstaller
from installers.vault import VaultInstaller

INSTALLERS: Dict[str, Type[Installer]] = {
    MetabaseInstaller.name: MetabaseInstaller,
    VaultInstaller.name: VaultInstaller,
    DockerInstaller.name: DockerInstaller,
    SupabaseInstaller.name: SupabaseInstaller,
}


def available_installers() -> List[str]:
    return sorted(INSTALLERS)


def get_installer(name: str, console: Optional[Console] = None, **options) -> Installer:
    try:
        installer_cls = INSTALLERS[name.lower()]
    except KeyError:
        raise ConfigurationError(
            f"Unknown application '{name}'. Available: {', '.join(available_installers())}"
        ) from None
    return installer_cls(console=console, **options)
