import subprocess
from typing import Dict, List, Optional, Sequence, Tuple

from core.errors import HypervisorCommandError
from core.guest import CommandResult, GuestExecutor
from core.pve_cli import PveCli

PVESM_STATUS = """\
Name             Type     Status           Total            Used       Available        %
local             dir     active        98497780        12345678        80000000   12.53%
local-lvm     lvmthin     active       832888832        12345678       800000000    1.48%
"""

PVEAM_LIST_LOCAL = """\
NAME                                                         SIZE
local:vztmpl/debian-12-standard_12.7-1_amd64.tar.zst         120.29MB
"""


class _Scripted:
    def __init__(self, prefix: Tuple[str, ...], returncode: int, stdout: str, stderr: str, times: Optional[int]):
        self.prefix = prefix
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.times = times


class FakePveCli(PveCli):
    """
    In-memory stand-in for pct/qm/pvesm/pveam/pvesh.

    Instance lifecycle (status/create/start/stop/destroy) is tracked as
    state; everything else answers from responses scripted with `on()`,
    matched by argv prefix, latest registration first. Unscripted commands
    succeed with empty output. Every argv is recorded in `calls`.
    """

    def __init__(self, containers: Optional[Dict[int, str]] = None, vms: Optional[Dict[int, str]] = None):
        self.calls: List[List[str]] = []
        self.inputs: List[Optional[str]] = []
        self.instances: Dict[Tuple[str, int], str] = {}
        for ctid, status in (containers or {}).items():
            self.instances[("pct", ctid)] = status
        for vmid, status in (vms or {}).items():
            self.instances[("qm", vmid)] = status
        self._scripts: List[_Scripted] = []

    def on(self, *prefix, returncode: int = 0, stdout: str = "", stderr: str = "", times: Optional[int] = None) -> None:
        self._scripts.insert(0, _Scripted(tuple(str(p) for p in prefix), returncode, stdout, stderr, times))

    def commands(self, *prefix) -> List[List[str]]:
        prefix = [str(p) for p in prefix]
        return [call for call in self.calls if call[: len(prefix)] == prefix]

    def _scripted(self, argv: List[str]) -> Optional[subprocess.CompletedProcess]:
        for script in self._scripts:
            if tuple(argv[: len(script.prefix)]) != script.prefix:
                continue
            if script.times is not None:
                script.times -= 1
                if script.times <= 0:
                    self._scripts.remove(script)
            return subprocess.CompletedProcess(argv, script.returncode, script.stdout, script.stderr)
        return None

    def _lifecycle(self, argv: List[str]) -> Optional[subprocess.CompletedProcess]:
        if len(argv) < 3 or argv[0] not in ("pct", "qm") or not argv[2].isdigit():
            return None
        key = (argv[0], int(argv[2]))
        action = argv[1]
        if action == "create":
            self.instances[key] = "stopped"
            return subprocess.CompletedProcess(argv, 0, "", "")
        if action not in ("status", "start", "stop", "destroy"):
            return None
        if key not in self.instances:
            return subprocess.CompletedProcess(
                argv, 2, "", f"Configuration file for {argv[2]} does not exist"
            )
        if action == "status":
            return subprocess.CompletedProcess(argv, 0, f"status: {self.instances[key]}\n", "")
        if action == "destroy":
            del self.instances[key]
        else:
            self.instances[key] = "running" if action == "start" else "stopped"
        return subprocess.CompletedProcess(argv, 0, "", "")

    def _run(self, argv: Sequence[str], *, check: bool = True, input: Optional[str] = None) -> subprocess.CompletedProcess:
        argv = [str(a) for a in argv]
        self.calls.append(argv)
        self.inputs.append(input)
        result = self._scripted(argv) or self._lifecycle(argv) or subprocess.CompletedProcess(argv, 0, "", "")
        if check and result.returncode != 0:
            raise HypervisorCommandError(argv, result.returncode, result.stderr)
        return result


class RecordingExecutor(GuestExecutor):
    """Guest executor that records commands and answers from a substring table."""

    description = "fake guest"

    def __init__(self, responses: Optional[Dict[str, CommandResult]] = None) -> None:
        self.commands: List[str] = []
        self.files: Dict[str, str] = {}
        self.responses = responses or {}

    def run(self, command: str, check: bool = True, input: Optional[str] = None) -> CommandResult:
        self.commands.append(command)
        if input is not None and "cat > " in command:
            path = command.split("cat > ", 1)[1].split(" ", 1)[0].strip("'")
            self.files[path] = input
        result = CommandResult(0)
        for needle, response in self.responses.items():
            if needle in command:
                result = response
                break
        return self._checked(command, result, check)
