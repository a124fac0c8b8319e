"""Operating-system operations: commands, applications, processes, volume, screenshots."""

import logging
import os
import platform
import socket
import subprocess
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

import psutil

from kotai.status import StatusInfo, check_status

log = logging.getLogger(__name__)

_VOLUME_MUTE = 173
_VOLUME_DOWN = 174
_VOLUME_UP = 175
_VOLUME_STEPS = 50


class SystemOperationError(Exception):
    """A system operation failed; ``output`` holds whatever the command printed."""

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output


def _decode(data: Optional[bytes]) -> str:
    return data.decode("utf-8", errors="replace") if data else ""


def _cpu_model() -> str:
    try:
        with open("/proc/cpuinfo", encoding="utf-8", errors="replace") as handle:
            for line in handle:
                key, _, value = line.partition(":")
                if key.strip() == "model name":
                    return value.strip()
    except OSError:
        pass
    return platform.processor() or platform.machine()


def _powershell_quote(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"


class SystemManager:
    """Runs commands and queries the local machine."""

    def run_command(self, command: str, *args: str) -> str:
        """Run a command and return its combined stdout and stderr."""
        try:
            completed = subprocess.run(
                [command, *args],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                check=False,
            )
        except OSError as exc:
            raise SystemOperationError(f"{command}: {exc}") from exc
        output = _decode(completed.stdout)
        if completed.returncode != 0:
            raise SystemOperationError(
                f"{command} exited with status {completed.returncode}", output=output
            )
        return output

    @staticmethod
    def _resolve_application(app_path: str) -> str:
        if os.path.exists(app_path):
            return app_path
        for directory in os.environ.get("PATH", "").split(os.pathsep):
            candidate = os.path.join(directory, app_path)
            if os.path.exists(candidate):
                return candidate
            if not app_path.endswith(".exe"):
                candidate = os.path.join(directory, app_path + ".exe")
                if os.path.exists(candidate):
                    return candidate
        raise SystemOperationError(f"Приложение {app_path} не найдено")

    def open_application(self, app_path: str) -> None:
        """Start an application given by path or by name found on PATH."""
        resolved = self._resolve_application(app_path)
        try:
            subprocess.Popen([resolved])
        except OSError as exc:
            raise SystemOperationError(f"{resolved}: {exc}") from exc

    def open_url(self, url: str) -> None:
        """Open a URL in the default browser."""
        try:
            subprocess.Popen(["rundll32", "url.dll,FileProtocolHandler", url])
        except OSError as exc:
            raise SystemOperationError(f"rundll32: {exc}") from exc

    def get_system_info(self) -> Dict[str, Any]:
        """Collect host, CPU, memory and disk information."""
        try:
            uptime = int(time.time() - psutil.boot_time())
            memory = psutil.virtual_memory()
            partitions = psutil.disk_partitions(all=False)
        except (psutil.Error, OSError) as exc:
            raise SystemOperationError(str(exc)) from exc

        info: Dict[str, Any] = {
            "hostname": socket.gethostname(),
            "os": platform.system().lower(),
            "platform": platform.system(),
            "platform_version": platform.release(),
            "uptime": uptime,
            "cpu_model": _cpu_model(),
            "cpu_cores": psutil.cpu_count(logical=False) or psutil.cpu_count() or 1,
            "total_memory": memory.total,
            "free_memory": memory.free,
            "used_memory": memory.used,
            "memory_percent": float(memory.percent),
        }

        disks: List[Dict[str, Any]] = []
        for partition in partitions:
            try:
                usage = psutil.disk_usage(partition.mountpoint)
            except (psutil.Error, OSError):
                continue
            disks.append(
                {
                    "device": partition.device,
                    "mountpoint": partition.mountpoint,
                    "fstype": partition.fstype,
                    "total": usage.total,
                    "free": usage.free,
                    "used": usage.used,
                    "percent": float(usage.percent),
                }
            )
        info["disks"] = disks
        return info

    def get_running_processes(self) -> List[Dict[str, Any]]:
        """List running processes; those that cannot be inspected are left out."""
        result: List[Dict[str, Any]] = []
        try:
            processes = list(psutil.process_iter())
        except (psutil.Error, OSError) as exc:
            raise SystemOperationError(str(exc)) from exc

        for proc in processes:
            try:
                with proc.oneshot():
                    name = proc.name()
                    created = proc.create_time()
                    mem_percent = proc.memory_percent()
                    times = proc.cpu_times()
            except (psutil.Error, OSError):
                continue
            elapsed = time.time() - created
            busy = times.user + times.system
            cpu_percent = 100.0 * busy / elapsed if elapsed > 0 else 0.0
            result.append(
                {
                    "pid": proc.pid,
                    "name": name,
                    "create_time": datetime.fromtimestamp(created),
                    "mem_percent": float(mem_percent),
                    "cpu_percent": cpu_percent,
                }
            )
        return result

    def kill_process(self, pid: int) -> None:
        """Kill the process with the given PID."""
        try:
            psutil.Process(pid).kill()
        except (psutil.Error, OSError, ValueError) as exc:
            raise SystemOperationError(f"process {pid}: {exc}") from exc

    def _send_keys(self, *loops: "tuple[int, int]") -> None:
        parts = ["$shell = New-Object -ComObject WScript.Shell"]
        for code, count in loops:
            if count > 0:
                parts.append(f"1..{count} | ForEach-Object {{ $shell.SendKeys([char]{code}) }}")
        self.run_command("powershell", "-command", "; ".join(parts))

    def set_volume(self, level: int) -> None:
        """Set the system volume (0-100) by stepping it down to zero and back up."""
        if not 0 <= level <= 100:
            raise ValueError("Уровень громкости должен быть от 0 до 100")
        self._send_keys((_VOLUME_DOWN, _VOLUME_STEPS), (_VOLUME_UP, level // 2))

    def toggle_mute(self) -> None:
        """Toggle the system mute state."""
        self._send_keys((_VOLUME_MUTE, 1))

    def take_screenshot(self, file_path: str) -> None:
        """Capture the screen into an image file."""
        script = (
            "Add-Type -AssemblyName System.Windows.Forms; "
            "[System.Windows.Forms.SendKeys]::SendWait('{PRTSC}'); "
            "$img = [System.Windows.Forms.Clipboard]::GetImage(); "
            f"$img.Save({_powershell_quote(str(file_path))});"
        )
        self.run_command("powershell", "-command", script)

    def check_status(self) -> StatusInfo:
        """Return the installation health check."""
        return check_status()

    def print_status(self) -> None:
        """Print the health check summary to standard output."""
        print(self.check_status().summary())