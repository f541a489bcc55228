from prometheus_client import Counter, Gauge, Histogram

# -----------------------------
# HTTP / API level metrics
# -----------------------------
REQUEST_COUNT = Counter(
    "pve_provisioner_requests_total",
    "Total HTTP requests to pve-provisioner",
    ["method", "endpoint"],
)

REQUEST_LATENCY = Histogram(
    "pve_provisioner_request_latency_seconds",
    "Latency of HTTP requests to pve-provisioner",
    ["endpoint"],
)

# -----------------------------
# Provisioning metrics
# -----------------------------
PROVISION_TOTAL = Counter(
    "pve_provision_runs_total",
    "Provisioning runs by instance kind and outcome",
    ["kind", "outcome"],
)

PROVISION_DURATION = Histogram(
    "pve_provision_duration_seconds",
    "Wall time of a provisioning run",
    ["kind"],
    buckets=(5, 15, 30, 60, 120, 300, 600, 1200, 1800),
)

READINESS_TIMEOUTS = Counter(
    "pve_provision_readiness_timeouts_total",
    "Readiness polls that hit their attempt ceiling",
    ["kind", "probe"],
)

# -----------------------------
# Inventory metrics
# -----------------------------
INVENTORY_CONTAINERS = Gauge(
    "pve_inventory_containers",
    "LXC containers seen by the last inventory scan",
    ["status"],
)


def record_provision(kind: str, outcome: str, duration: float) -> None:
    PROVISION_TOTAL.labels(kind=kind, outcome=outcome).inc()
    PROVISION_DURATION.labels(kind=kind).observe(duration)


def record_readiness_timeout(kind: str, probe: str) -> None:
    READINESS_TIMEOUTS.labels(kind=kind, probe=probe).inc()


def record_inventory(running: int, stopped: int) -> None:
    INVENTORY_CONTAINERS.labels(status="running").set(running)
    INVENTORY_CONTAINERS.labels(status="stopped").set(stopped)
