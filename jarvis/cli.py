"""JARVIS control CLI: start, stop, restart, status and emergency-stop.

Lifecycle commands go through the OS service manager (systemd on Linux,
the Windows service control manager on Windows). ``run`` runs the service in
the foreground of the current terminal.
"""

import argparse
import platform
import subprocess
import sys

SERVICE_NAME = "jarvis"
WINDOWS_SERVICE_NAME = "JARVIS"

_GREEN = "\033[32m"
_RED = "\033[31m"
_YELLOW = "\033[33m"
_RST = "\033[0m"

HELP_EPILOG = """\
examples:
  jarvis start
  jarvis stop
  jarvis status
  jarvis emergency-stop

Note: some commands may require administrator privileges.
"""


def _is_windows() -> bool:
    return platform.system().lower() == "windows"


def _run(command: list[str] | str, shell: bool = False) -> int:
    try:
        proc = subprocess.run(command, shell=shell)
    except OSError as e:
        print(f"{_RED}Failed to run {command!r}: {e}{_RST}")
        return 1
    return proc.returncode


def start_service() -> int:
    print("Starting JARVIS service...")
    kwargs = {}
    if _is_windows():
        kwargs["creationflags"] = subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP
    else:
        kwargs["start_new_session"] = True
    try:
        subprocess.Popen([sys.executable, "-m", "jarvis.main"], **kwargs)
    except OSError as e:
        print(f"{_RED}Failed to start JARVIS service: {e}{_RST}")
        return 1
    print(f"{_GREEN}JARVIS service launched{_RST}")
    return 0


def stop_service() -> int:
    print("Stopping JARVIS service...")
    if _is_windows():
        code = _run(["net", "stop", WINDOWS_SERVICE_NAME])
    else:
        code = _run(["sudo", "systemctl", "stop", SERVICE_NAME])
    _report(code, "JARVIS service stopped successfully", "Failed to stop JARVIS service")
    return code


def restart_service() -> int:
    print("Restarting JARVIS service...")
    if _is_windows():
        code = _run(["net", "stop", WINDOWS_SERVICE_NAME])
        if code == 0:
            code = _run(["net", "start", WINDOWS_SERVICE_NAME])
    else:
        code = _run(["sudo", "systemctl", "restart", SERVICE_NAME])
    _report(code, "JARVIS service restarted successfully", "Failed to restart JARVIS service")
    return code


def service_status() -> int:
    print("Checking JARVIS service status...")
    if _is_windows():
        return _run(["sc", "query", WINDOWS_SERVICE_NAME])
    return _run(["sudo", "systemctl", "status", SERVICE_NAME])


def emergency_stop() -> int:
    print(f"{_YELLOW}EMERGENCY STOP - Forcing JARVIS service to stop...{_RST}")
    if _is_windows():
        code = _run(["taskkill", "/F", "/FI", "WINDOWTITLE eq JARVIS*"])
    else:
        code = _run(["pkill", "-f", "jarvis.main"])
    _report(code, "JARVIS service force stopped", "Failed to force stop JARVIS service")
    return code


def run_foreground() -> int:
    from jarvis.main import main as service_main

    return service_main([])


def _report(code: int, ok: str, failed: str) -> None:
    if code == 0:
        print(f"{_GREEN}{ok}{_RST}")
    else:
        print(f"{_RED}{failed} (exit code: {code}){_RST}")


COMMANDS = {
    "start": (start_service, "Start the JARVIS service"),
    "stop": (stop_service, "Stop the JARVIS service gracefully"),
    "restart": (restart_service, "Restart the JARVIS service"),
    "status": (service_status, "Check the service status"),
    "emergency-stop": (emergency_stop, "Force stop the service (emergency only)"),
    "run": (run_foreground, "Run the service in the foreground"),
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jarvis",
        description="JARVIS CLI - Control your JARVIS AI Assistant",
        epilog=HELP_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", metavar="<command>")
    for name, (_func, help_text) in COMMANDS.items():
        sub.add_parser(name, help=help_text)
    sub.add_parser("help", help="Show this help message")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1
    if args.command == "help":
        parser.print_help()
        return 0

    func, _help = COMMANDS[args.command]
    return func()


if __name__ == "__main__":
    sys.exit(main())
