"""Allow-listed shell command execution and OS information.

Authorization is a literal match of the command's first token against
``system.allowedCommands``; arguments are not inspected.
"""

import getpass
import logging
import os
import platform
import socket
import subprocess
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

log = logging.getLogger(__name__)

MAX_OUTPUT_BYTES = 2 * 1024 * 1024


@dataclass(frozen=True)
class CommandResult:
    success: bool
    stdout: str = ""
    stderr: str = ""
    error: str | None = None
    authorized: bool = True
    returncode: int | None = None


@dataclass(frozen=True)
class ProcessInfo:
    pid: int
    name: str
    user: str = ""
    cpu: float = 0.0
    mem: float = 0.0
    command: str = ""
    extra: dict = field(default_factory=dict)


def parse_key_value(output: str, separator: str = "=") -> dict[str, str]:
    """Parse ``KEY=value`` lines (os-release, wmic /format:list)."""
    result = {}
    for line in output.splitlines():
        if separator not in line:
            continue
        key, _, value = line.partition(separator)
        key, value = key.strip(), value.strip().strip('"')
        if key and value:
            result[key] = value
    return result


def parse_linux_ps(output: str) -> list[ProcessInfo]:
    """Parse ``ps aux --no-headers`` output."""
    processes = []
    for line in output.splitlines():
        parts = line.split(None, 10)
        if len(parts) < 11:
            continue
        try:
            pid = int(parts[1])
            cpu, mem = float(parts[2]), float(parts[3])
        except ValueError:
            continue
        command = parts[10]
        processes.append(ProcessInfo(
            pid=pid,
            name=os.path.basename(command.split()[0]) if command.split() else "",
            user=parts[0],
            cpu=cpu,
            mem=mem,
            command=command,
            extra={"vsz": parts[4], "rss": parts[5], "tty": parts[6], "stat": parts[7],
                   "start": parts[8], "time": parts[9]},
        ))
    return processes


def parse_windows_tasklist(output: str) -> list[ProcessInfo]:
    """Parse ``tasklist /fo csv /nh`` output."""
    processes = []
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        fields = [f.strip('"') for f in line.split('","')]
        if len(fields) < 5:
            continue
        try:
            pid = int(fields[1])
        except ValueError:
            continue
        processes.append(ProcessInfo(
            pid=pid,
            name=fields[0],
            command=fields[0],
            extra={"sessionName": fields[2], "sessionNum": fields[3], "memUsage": fields[4]},
        ))
    return processes


class SystemManager:
    """Runs allow-listed commands; every call returns a result instead of raising."""

    def __init__(self, config: Mapping):
        system_cfg = config["system"]
        self._enabled = system_cfg.get("enableSystemAccess", False)
        self._allowed = tuple(system_cfg.get("allowedCommands", ()))
        self._max_command_length = system_cfg.get("maxCommandLength", 200)
        self._timeout_s = config["jarvis"].get("responseTimeout", 30000) / 1000.0
        self._platform = platform.system().lower()

    @property
    def is_windows(self) -> bool:
        return self._platform == "windows"

    def authorize(self, command: str) -> str | None:
        """Return the reason *command* may not run, or None if it may."""
        if not self._enabled:
            return "System access is disabled"
        if len(command) > self._max_command_length:
            return f"Command exceeds maximum length of {self._max_command_length}"
        tokens = command.split()
        name = tokens[0] if tokens else ""
        if name not in self._allowed:
            return f"Command '{name}' is not allowed"
        return None

    def execute_command(self, command: str, args: Sequence[str] = ()) -> CommandResult:
        full_command = " ".join([command, *args]).strip()
        reason = self.authorize(full_command)
        if reason is not None:
            log.warning("Refusing command %r: %s", full_command, reason)
            return CommandResult(success=False, error=reason, authorized=False)

        log.info("Executing command: %s", full_command)
        try:
            proc = subprocess.run(
                full_command,
                shell=True,
                capture_output=True,
                timeout=self._timeout_s,
            )
        except subprocess.TimeoutExpired as e:
            log.error("Command timed out after %.1fs: %s", self._timeout_s, full_command)
            return CommandResult(
                success=False,
                stdout=_decode(e.stdout),
                stderr=_decode(e.stderr),
                error=f"Command timed out after {self._timeout_s:.1f}s",
            )
        except OSError as e:
            log.error("Command execution failed: %s", e)
            return CommandResult(success=False, error=str(e))

        if len(proc.stdout) > MAX_OUTPUT_BYTES or len(proc.stderr) > MAX_OUTPUT_BYTES:
            log.error("Command output exceeded %d bytes: %s", MAX_OUTPUT_BYTES, full_command)
            return CommandResult(
                success=False,
                stdout=_decode(proc.stdout[:MAX_OUTPUT_BYTES]),
                stderr=_decode(proc.stderr[:MAX_OUTPUT_BYTES]),
                error="Output exceeded maximum buffer size",
                returncode=proc.returncode,
            )

        stdout, stderr = _decode(proc.stdout), _decode(proc.stderr)
        if proc.returncode != 0:
            log.error("Command execution failed with exit code %d: %s", proc.returncode, full_command)
            return CommandResult(
                success=False,
                stdout=stdout,
                stderr=stderr,
                error=f"Command failed with exit code {proc.returncode}",
                returncode=proc.returncode,
            )
        return CommandResult(success=True, stdout=stdout, stderr=stderr, returncode=0)

    # ── OS information ──────────────────────────────────────────

    def get_system_info(self) -> dict:
        info = {
            "platform": self._platform,
            "release": platform.release(),
            "hostname": socket.gethostname(),
            "uptime": _uptime_seconds(),
            "cpuCount": os.cpu_count(),
            "loadAverage": list(os.getloadavg()) if hasattr(os, "getloadavg") else [],
            "user": _current_user(),
            "time": time.strftime("%Y-%m-%dT%H:%M:%S%z"),
        }

        if self._platform == "linux":
            info["linux"] = self._linux_info()
        elif self.is_windows:
            info["windows"] = self._windows_info()
        return info

    def _linux_info(self) -> dict:
        info = {}
        try:
            info["osRelease"] = parse_key_value(Path("/etc/os-release").read_text())
        except OSError as e:
            log.warning("Failed to read /etc/os-release: %s", e)
        try:
            meminfo = parse_key_value(Path("/proc/meminfo").read_text(), separator=":")
            info["memory"] = {k: meminfo[k] for k in ("MemTotal", "MemFree", "MemAvailable") if k in meminfo}
        except OSError as e:
            log.warning("Failed to read /proc/meminfo: %s", e)
        return info

    def _windows_info(self) -> dict:
        info = {}
        queries = {
            "computerSystem": "wmic computersystem get manufacturer,model,name /format:list",
            "os": "wmic os get version,buildnumber /format:list",
        }
        for key, query in queries.items():
            try:
                proc = subprocess.run(query, shell=True, capture_output=True, text=True, timeout=self._timeout_s)
                info[key] = parse_key_value(proc.stdout)
            except (OSError, subprocess.TimeoutExpired) as e:
                log.warning("Failed to get Windows system info (%s): %s", key, e)
        return info

    # ── Processes ───────────────────────────────────────────────

    def get_processes(self) -> list[ProcessInfo]:
        command = "tasklist /fo csv /nh" if self.is_windows else "ps aux --no-headers"
        try:
            proc = subprocess.run(command, shell=True, capture_output=True, text=True, timeout=self._timeout_s)
        except (OSError, subprocess.TimeoutExpired) as e:
            log.error("Failed to get process list: %s", e)
            return []
        if proc.returncode != 0:
            log.error("Failed to get process list: %s", proc.stderr.strip())
            return []
        if self.is_windows:
            return parse_windows_tasklist(proc.stdout)
        return parse_linux_ps(proc.stdout)

    def kill_process(self, pid: int) -> CommandResult:
        if not self._enabled:
            return CommandResult(success=False, error="System access is disabled", authorized=False)

        command = f"taskkill /PID {int(pid)} /F" if self.is_windows else f"kill -9 {int(pid)}"
        try:
            proc = subprocess.run(command, shell=True, capture_output=True, text=True, timeout=self._timeout_s)
        except (OSError, subprocess.TimeoutExpired) as e:
            log.error("Failed to kill process %d: %s", pid, e)
            return CommandResult(success=False, error=str(e))
        if proc.returncode != 0:
            log.error("Failed to kill process %d: %s", pid, proc.stderr.strip())
            return CommandResult(
                success=False, stdout=proc.stdout, stderr=proc.stderr,
                error=f"Command failed with exit code {proc.returncode}", returncode=proc.returncode,
            )
        return CommandResult(success=True, stdout=proc.stdout, stderr=proc.stderr, returncode=0)


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, str):
        return data
    return data.decode("utf-8", errors="replace")


def _uptime_seconds() -> float | None:
    try:
        return float(Path("/proc/uptime").read_text().split()[0])
    except (OSError, ValueError, IndexError):
        return None


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return ""
