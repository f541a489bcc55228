import logging

from config.settings import DEBUG, LOG_FILE

logging.basicConfig(
    filename=str(LOG_FILE),
    level=logging.DEBUG if DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)

# asyncssh logs every channel open/close and httpx every request at INFO
for _noisy in ("asyncssh", "httpx", "httpcore"):
    logging.getLogger(_noisy).setLevel(logging.DEBUG if DEBUG else logging.WARNING)

logger = logging.getLogger("pve-provisioner")


def log_event(message: str, level: int = logging.INFO) -> None:
    """
    Single line event in pve-provisioner.log. Callers prefix the subsystem,
    e.g. `[pve]`, `[provision]`, `[inventory]`. Secrets must be redacted
    before they get here.
    """
    logger.log(level, message)
