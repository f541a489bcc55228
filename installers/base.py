from typing import Any, Dict, List, Optional

import httpx

from core.console import Console
from core.guest import ConnectionInfo
from core.errors import InstallError
from core.logger import log_event
from schemas.provision_schema import InstanceKind

GITHUB_API = "https://api.github.com"


def fetch_latest_release(repo: str, timeout: float = 10.0) -> Optional[str]:
    """
    Latest release tag of a GitHub repository with any leading `v` removed,
    or None when GitHub cannot be reached.
    """
    try:
        resp = httpx.get(
            f"{GITHUB_API}/repos/{repo}/releases/latest",
            headers={"Accept": "application/vnd.github+json"},
            timeout=timeout,
            follow_redirects=True,
        )
        resp.raise_for_status()
        tag = resp.json().get("tag_name") or ""
    except (httpx.HTTPError, ValueError) as e:
        log_event(f"[install] Could not look up latest release of {repo}: {e}")
        return None
    return tag.lstrip("v") or None


class Installer:
    """
    Post-provisioning hook for one application.

    The provisioner calls `install_into` once the guest is running, passing
    a ConnectionInfo whose executor runs commands inside the guest.
    Subclasses raise InstallError (or let GuestCommandError propagate) on
    failure; the provisioner reports that as a warning and keeps the guest.
    """

    name = "application"
    title = "Application"
    # the application itself runs in containers (Docker), so an LXC guest needs nesting
    requires_container_runtime = False
    # configuration embeds the guest address; skip install when it is unknown
    needs_address = False
    defaults: Dict[str, Any] = {}

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console()

    def app_defaults(self, kind: InstanceKind) -> Dict[str, Any]:
        defaults = {"app": self.title}
        defaults.update(self.defaults)
        return defaults

    def install_into(self, connection: ConnectionInfo) -> None:
        raise NotImplementedError

    def update_in(self, connection: ConnectionInfo) -> None:
        raise InstallError(f"{self.title} does not support in-place updates")

    def access_lines(self, connection: ConnectionInfo) -> List[str]:
        return []

    def management_lines(self, connection: ConnectionInfo) -> List[str]:
        return []
