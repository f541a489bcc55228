import secrets
import string
from pathlib import Path
from typing import Optional

from config.settings import CREDENTIALS_DIR
from core.logger import log_event

_ALPHABET = string.ascii_letters + string.digits


def generate_password(length: int = 20) -> str:
    """Random alphanumeric password, safe to pass on any command line."""
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def generate_secret(length: int = 32) -> str:
    return generate_password(length)


def record_credentials(name: str, password: str, directory: Optional[Path] = None) -> Path:
    """
    Append `<name> password: <password>` to `<directory>/<name>.creds`.

    The file is only ever appended to, so earlier runs stay recoverable.
    """
    directory = Path(directory or CREDENTIALS_DIR)
    directory.mkdir(parents=True, exist_ok=True)
    creds_path = directory / f"{name}.creds"
    with open(creds_path, "a", encoding="utf-8") as f:
        f.write(f"{name} password: {password}\n")
    creds_path.chmod(0o600)
    log_event(f"[credentials] Stored credentials for {name} in {creds_path}")
    return creds_path
