"""Android device control over ADB: discovery, shell commands, file transfer."""

import getpass
import logging
import subprocess
import sys
import threading
import time
from pathlib import Path
from typing import List, Optional

from kotai.config import MobileConfig

log = logging.getLogger(__name__)

_AUTO_CONNECT_DELAY = 2.0
_REMOTE_SCREENSHOT = "/sdcard/screenshot.png"


class MobileError(Exception):
    """A mobile operation failed; ``output`` holds what ADB printed."""

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output


def parse_devices(output: str) -> List[str]:
    """Return the IDs of ready devices from ``adb devices`` output."""
    devices = []
    for line in output.split("\n")[1:]:
        parts = line.split()
        if len(parts) >= 2 and parts[1] == "device":
            devices.append(parts[0])
    return devices


def _candidate_adb_paths() -> List[str]:
    if sys.platform.startswith("win"):
        return [
            "adb.exe",
            "C:\\Program Files\\Android\\android-sdk\\platform-tools\\adb.exe",
            "C:\\Program Files (x86)\\Android\\android-sdk\\platform-tools\\adb.exe",
            "C:\\Android\\android-sdk\\platform-tools\\adb.exe",
            "C:\\Android\\sdk\\platform-tools\\adb.exe",
        ]
    user = getpass.getuser()
    if sys.platform == "darwin":
        return [
            "adb",
            "/usr/local/bin/adb",
            "/usr/bin/adb",
            "/opt/homebrew/bin/adb",
            f"/Users/{user}/Library/Android/sdk/platform-tools/adb",
        ]
    if sys.platform.startswith("linux"):
        return [
            "adb",
            "/usr/local/bin/adb",
            "/usr/bin/adb",
            f"/home/{user}/Android/Sdk/platform-tools/adb",
        ]
    return []


def _find_adb() -> str:
    for path in _candidate_adb_paths():
        try:
            completed = subprocess.run(
                [path, "version"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                check=False,
            )
        except OSError:
            continue
        if completed.returncode == 0:
            return path
    raise MobileError("ADB не найден в системе")


class MobileManager:
    """Manages the USB connection to a mobile device."""

    def __init__(self, config: MobileConfig) -> None:
        self.config = config
        self.adb_path = config.adb_path
        self.running = False
        self._device_id: Optional[str] = None
        self._lock = threading.RLock()

    def _run_adb(self, *args: str) -> str:
        try:
            completed = subprocess.run(
                [self.adb_path, *args],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                check=False,
            )
        except OSError as exc:
            raise MobileError(f"{self.adb_path}: {exc}") from exc
        output = completed.stdout.decode("utf-8", errors="replace") if completed.stdout else ""
        if completed.returncode != 0:
            raise MobileError(
                f"{self.adb_path} exited with status {completed.returncode}", output=output
            )
        return output

    def _init_adb(self) -> None:
        if not self.adb_path:
            self.adb_path = _find_adb()
        try:
            output = self._run_adb("version")
        except MobileError as exc:
            raise MobileError(
                f"ошибка при проверке ADB: {exc}, вывод: {exc.output}", output=exc.output
            ) from exc
        log.info("ADB инициализирован: %s", output.strip())

    def start(self) -> None:
        """Start the manager: check ADB and optionally connect in the background."""
        if not self.config.enabled:
            log.info("Мобильное подключение отключено в настройках")
            return
        with self._lock:
            if self.config.usb_enabled:
                try:
                    self._init_adb()
                except MobileError as exc:
                    log.warning("Предупреждение: не удалось инициализировать ADB: %s", exc)
                if self.config.auto_connect:
                    threading.Thread(target=self._auto_connect, daemon=True).start()
            self.running = True

    def stop(self) -> None:
        """Stop the manager and drop any device connection."""
        with self._lock:
            if self.config.usb_enabled and self._device_id is not None:
                self.disconnect_usb()
            self.running = False

    def _auto_connect(self) -> None:
        time.sleep(_AUTO_CONNECT_DELAY)
        try:
            devices = self.get_connected_devices()
        except MobileError as exc:
            log.error("Ошибка при поиске USB-устройств: %s", exc)
            return
        if not devices:
            log.info("Не найдено подключенных USB-устройств")
            return
        device_id = devices[0]
        try:
            self.connect_usb(device_id)
        except MobileError as exc:
            log.error("Ошибка при подключении к USB-устройству %s: %s", device_id, exc)
            return
        log.info("Успешно подключено к USB-устройству: %s", device_id)

    def get_connected_devices(self) -> List[str]:
        """Return IDs of devices that ADB reports as ready."""
        with self._lock:
            if not self.adb_path:
                raise MobileError("ADB не инициализирован")
            return parse_devices(self._run_adb("devices"))

    def connect_usb(self, device_id: str) -> None:
        """Make the given attached device the active one."""
        with self._lock:
            if not self.adb_path:
                raise MobileError("ADB не инициализирован")
            if device_id not in self.get_connected_devices():
                raise MobileError(f"Устройство {device_id} не найдено")
            self._device_id = device_id

    def disconnect_usb(self) -> None:
        """Forget the active device."""
        with self._lock:
            self._device_id = None

    def is_connected_usb(self) -> bool:
        """Whether a device is currently active."""
        with self._lock:
            return self._device_id is not None

    def connected_device_id(self) -> Optional[str]:
        """ID of the active device, or None."""
        with self._lock:
            return self._device_id

    def _require_device(self) -> str:
        if not self._device_id:
            raise MobileError("Нет подключенного USB-устройства")
        if not self.adb_path:
            raise MobileError("ADB не инициализирован")
        return self._device_id

    def execute_command(self, command: str, *args: str) -> str:
        """Run a shell command on the active device and return its output."""
        with self._lock:
            device_id = self._require_device()
            return self._run_adb("-s", device_id, "shell", command, *args)

    def push_file(self, local_path: str, remote_path: str) -> None:
        """Copy a local file to the device."""
        with self._lock:
            device_id = self._require_device()
            if not Path(local_path).exists():
                raise MobileError(f"локальный файл не существует: {local_path}")
            try:
                self._run_adb("-s", device_id, "push", str(local_path), remote_path)
            except MobileError as exc:
                raise MobileError(
                    f"ошибка при отправке файла: {exc}, вывод: {exc.output}", output=exc.output
                ) from exc

    def pull_file(self, remote_path: str, local_path: str) -> None:
        """Copy a file from the device, creating the local directory if needed."""
        with self._lock:
            device_id = self._require_device()
            Path(local_path).parent.mkdir(parents=True, exist_ok=True)
            try:
                self._run_adb("-s", device_id, "pull", remote_path, str(local_path))
            except MobileError as exc:
                raise MobileError(
                    f"ошибка при получении файла: {exc}, вывод: {exc.output}", output=exc.output
                ) from exc

    def take_screenshot(self, local_path: str) -> None:
        """Capture the device screen into a local PNG file."""
        with self._lock:
            device_id = self._require_device()
            try:
                self._run_adb("-s", device_id, "shell", "screencap", "-p", _REMOTE_SCREENSHOT)
            except MobileError as exc:
                raise MobileError(
                    f"ошибка при создании снимка экрана: {exc}, вывод: {exc.output}",
                    output=exc.output,
                ) from exc
            self.pull_file(_REMOTE_SCREENSHOT, local_path)
            try:
                self._run_adb("-s", device_id, "shell", "rm", _REMOTE_SCREENSHOT)
            except MobileError as exc:
                log.warning(
                    "Предупреждение: не удалось удалить временный файл на устройстве: %s", exc
                )