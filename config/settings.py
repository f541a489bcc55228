import os
from pathlib import Path

# -----------------------------
# Base paths
# -----------------------------
BASE_DIR = Path(__file__).resolve().parent.parent  # project root: pve-provisioner/

# -----------------------------
# Logging
# -----------------------------
LOG_DIR = Path(os.getenv("PVE_PROVISION_LOG_DIR", str(BASE_DIR / "log")))
LOG_DIR.mkdir(parents=True, exist_ok=True)

LOG_FILE = LOG_DIR / "pve-provisioner.log"

# -----------------------------
# Credentials (append-only "<name> password: ..." lines)
# -----------------------------
CREDENTIALS_DIR = Path(os.getenv("CREDENTIALS_DIR", str(Path.home())))

# -----------------------------
# Inventory snapshot
# -----------------------------
INVENTORY_DIR = Path(os.getenv("INVENTORY_DIR", "/root/lxc-inventory"))
INVENTORY_FILE = Path(os.getenv("INVENTORY_FILE", str(INVENTORY_DIR / "inventory.json")))
INVENTORY_CSV = Path(os.getenv("INVENTORY_CSV", str(INVENTORY_DIR / "inventory.csv")))

# -----------------------------
# Hypervisor defaults
# -----------------------------
DEFAULT_BRIDGE = os.getenv("PVE_DEFAULT_BRIDGE", "vmbr0")
DEFAULT_STORAGE = os.getenv("PVE_DEFAULT_STORAGE", "local-lvm")
DEFAULT_TEMPLATE_STORAGE = os.getenv("PVE_DEFAULT_TEMPLATE_STORAGE", "local")
DEFAULT_LXC_TEMPLATE = os.getenv(
    "PVE_DEFAULT_LXC_TEMPLATE",
    "local:vztmpl/debian-12-standard_12.7-1_amd64.tar.zst",
)
DEFAULT_DNS = os.getenv("PVE_DEFAULT_DNS", "8.8.8.8")

# Distribution used when looking up downloadable templates (`pveam available`)
TEMPLATE_DISTRO_HINT = os.getenv("PVE_TEMPLATE_DISTRO", "debian")

# -----------------------------
# Readiness polling
# -----------------------------
# loopback ping inside a fresh container
LOOPBACK_POLL_ATTEMPTS = int(os.getenv("LOOPBACK_POLL_ATTEMPTS", "30"))
LOOPBACK_POLL_INTERVAL = float(os.getenv("LOOPBACK_POLL_INTERVAL", "1"))

# address discovery after start
IP_POLL_ATTEMPTS = int(os.getenv("IP_POLL_ATTEMPTS", "5"))
LXC_IP_POLL_INTERVAL = float(os.getenv("LXC_IP_POLL_INTERVAL", "5"))
VM_IP_POLL_INTERVAL = float(os.getenv("VM_IP_POLL_INTERVAL", "3"))

# delay between `start` and the first probe
START_SETTLE_SECONDS = float(os.getenv("START_SETTLE_SECONDS", "3"))

# -----------------------------
# SSH access to VM guests
# -----------------------------
VM_SSH_PORT = int(os.getenv("VM_SSH_PORT", "22"))
VM_SSH_USERNAME = os.getenv("VM_SSH_USERNAME", "root")
VM_SSH_PRIVATE_KEY = os.getenv(
    "VM_SSH_PRIVATE_KEY",
    str(Path.home() / ".ssh" / "id_rsa"),
)
DEFAULT_SSH_PUBLIC_KEY = Path(
    os.getenv("DEFAULT_SSH_PUBLIC_KEY", str(Path.home() / ".ssh" / "id_rsa.pub"))
)
SSH_CONNECT_ATTEMPTS = int(os.getenv("SSH_CONNECT_ATTEMPTS", "30"))
SSH_CONNECT_INTERVAL = float(os.getenv("SSH_CONNECT_INTERVAL", "2"))
SSH_CONNECT_TIMEOUT = float(os.getenv("SSH_CONNECT_TIMEOUT", "2"))

# -----------------------------
# Metrics / monitoring
# -----------------------------
METRICS_ENABLED = os.getenv("METRICS_ENABLED", "true").lower() == "true"

# -----------------------------
# Misc
# -----------------------------
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
