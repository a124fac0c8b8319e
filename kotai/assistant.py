"""The assistant core: special commands, AI answers and command history."""

import json
import logging
import os
import shutil
import sqlite3
import threading
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx

from kotai.config import AssistantConfig
from kotai.system import SystemOperationError

log = logging.getLogger(__name__)

_CHAT_COMPLETIONS = "https://api.openai.com/v1/chat/completions"
_MODEL = "gpt-3.5-turbo"
_TEMPERATURE = 0.7
_AI_TIMEOUT = 30.0
_PROCESS_LIMIT = 10
_GIB = 1024 * 1024 * 1024

_APP_ALIASES = (
    ("браузер", "chrome.exe"),
    ("блокнот", "notepad.exe"),
    ("калькулятор", "calc.exe"),
    ("проводник", "explorer.exe"),
)

_EXIT_COMMANDS = ("выход", "закрыть", "завершить работу")


class AssistantError(Exception):
    """The assistant could not process a request."""


@dataclass(frozen=True)
class HistoryEntry:
    """One command and the answer given to it."""

    timestamp: int
    command: str
    response: str

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)

    @classmethod
    def from_json(cls, text: str) -> "HistoryEntry":
        data = json.loads(text)
        return cls(
            timestamp=int(data.get("timestamp", 0)),
            command=str(data.get("command", "")),
            response=str(data.get("response", "")),
        )


def _default_exit() -> None:
    os._exit(0)


class _HistoryStore:
    """Key-value store of history entries ordered by key."""

    def __init__(self, path: str) -> None:
        self.path = path
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.execute(
            "CREATE TABLE IF NOT EXISTS history (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
        )
        self._conn.commit()

    def put(self, key: str, value: str) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO history (key, value) VALUES (?, ?)", (key, value)
        )
        self._conn.commit()

    def values(self) -> List[str]:
        rows = self._conn.execute("SELECT value FROM history ORDER BY key").fetchall()
        return [value for (value,) in rows]

    def close(self) -> None:
        self._conn.close()


def _remove_path(path: str) -> None:
    target = Path(path)
    if target.is_dir():
        shutil.rmtree(target, ignore_errors=True)
    else:
        try:
            target.unlink()
        except FileNotFoundError:
            pass


class Assistant:
    """Answers user commands, acting on the system where a command asks for it."""

    def __init__(
        self,
        config: AssistantConfig,
        system: Any,
        voice: Any = None,
        transport: Optional[httpx.BaseTransport] = None,
        on_exit: Optional[Callable[[], None]] = None,
        exit_delay: float = 2.0,
    ) -> None:
        self.config = config
        self.system = system
        self.voice = voice
        self.running = False
        self._transport = transport
        self._on_exit = on_exit or _default_exit
        self._exit_delay = exit_delay
        self._client: Optional[httpx.Client] = None
        self._db: Optional[_HistoryStore] = None
        self._lock = threading.RLock()

    def start(self) -> None:
        """Open the AI client and the history store and attach to voice input."""
        with self._lock:
            if self.running:
                return
            if self.config.openai_api_key:
                self._client = httpx.Client(
                    headers={"Authorization": f"Bearer {self.config.openai_api_key}"},
                    transport=self._transport,
                    timeout=_AI_TIMEOUT,
                )
            if self.config.history_enabled and self.config.history_file_path:
                path = self.config.history_file_path
                try:
                    Path(path).parent.mkdir(parents=True, exist_ok=True)
                    self._db = _HistoryStore(path)
                except (OSError, sqlite3.Error) as exc:
                    raise AssistantError(f"history {path}: {exc}") from exc
            if self.voice is not None:
                self.voice.set_command_callback(self._on_voice_command)
            self.running = True

    def stop(self) -> None:
        """Close the history store and the AI client."""
        with self._lock:
            if not self.running:
                return
            if self._db is not None:
                self._db.close()
                self._db = None
            if self._client is not None:
                self._client.close()
                self._client = None
            self.running = False

    def _on_voice_command(self, command: str) -> None:
        try:
            response = self.process_command(command)
        except AssistantError as exc:
            log.error("Ошибка обработки голосовой команды: %s", exc)
            self._say("Извините, произошла ошибка при обработке команды")
            return
        self._say(response)

    def _say(self, text: str) -> None:
        try:
            self.voice.speak(text)
        except Exception as exc:  # speech output failing must not break command handling
            log.warning("Ошибка воспроизведения: %s", exc)

    def process_command(self, command: str) -> str:
        """Answer a command, recording it in the history."""
        command = command.strip()
        if not command:
            return "Пожалуйста, укажите команду"
        response = self.handle_special_command(command)
        if response is None:
            response = self._process_with_ai(command)
        self._save_to_history(command, response)
        return response

    def handle_special_command(self, command: str) -> Optional[str]:
        """Handle a built-in command; return None when the command is not one."""
        cmd = command.lower()

        if "открой" in cmd or "запусти" in cmd:
            return self._open_application(cmd)

        if "громкость" in cmd:
            if "увеличь" in cmd or "прибавь" in cmd:
                self._set_volume(80)
                return "Увеличиваю громкость"
            if "уменьши" in cmd or "убавь" in cmd:
                self._set_volume(20)
                return "Уменьшаю громкость"
            if "выключи" in cmd or "без звука" in cmd:
                self._set_volume(0)
                return "Выключаю звук"

        if "скриншот" in cmd or "снимок экрана" in cmd:
            return self._take_screenshot()

        if "информация о системе" in cmd or "системная информация" in cmd:
            return self._system_info()

        if "список процессов" in cmd or "запущенные программы" in cmd:
            return self._process_list()

        if "завершить процесс" in cmd or "убить процесс" in cmd:
            return self._kill_process(cmd)

        if "открой сайт" in cmd or "открой страницу" in cmd:
            return self._open_url(cmd)

        if "очистить историю" in cmd or "удалить историю" in cmd:
            return self._clear_history()

        if cmd in _EXIT_COMMANDS:
            timer = threading.Timer(self._exit_delay, self._on_exit)
            timer.daemon = True
            timer.start()
            return "Завершаю работу. До свидания!"

        return None

    def _open_application(self, cmd: str) -> str:
        parts = cmd.split(" ")
        if len(parts) < 2:
            return "Пожалуйста, укажите, что нужно открыть"
        app_name = " ".join(parts[1:])
        for word, executable in _APP_ALIASES:
            if word in app_name:
                app_name = executable
                break
        try:
            self.system.open_application(app_name)
        except SystemOperationError as exc:
            return f"Не удалось открыть {app_name}: {exc}"
        return f"Открываю {app_name}"

    def _set_volume(self, level: int) -> None:
        try:
            self.system.set_volume(level)
        except (SystemOperationError, ValueError) as exc:
            log.warning("Не удалось изменить громкость: %s", exc)

    def _take_screenshot(self) -> str:
        path = Path.home() / "Pictures" / f"screenshot_{int(time.time())}.png"
        try:
            self.system.take_screenshot(str(path))
        except SystemOperationError as exc:
            return f"Не удалось сделать скриншот: {exc}"
        return f"Скриншот сохранен в {path}"

    def _system_info(self) -> str:
        try:
            info = self.system.get_system_info()
        except SystemOperationError as exc:
            return f"Не удалось получить информацию о системе: {exc}"
        return (
            "Информация о системе:\n"
            f"Хост: {info['hostname']}\n"
            f"ОС: {info['platform']} {info['platform_version']}\n"
            f"Процессор: {info['cpu_model']} ({info['cpu_cores']} ядер)\n"
            f"Память: {info['used_memory'] / _GIB:.2f} ГБ / "
            f"{info['total_memory'] / _GIB:.2f} ГБ ({info['memory_percent']:.1f}%)\n"
        )

    def _process_list(self) -> str:
        try:
            processes = self.system.get_running_processes()
        except SystemOperationError as exc:
            return f"Не удалось получить список процессов: {exc}"
        lines = ["Топ процессов по использованию памяти:\n"]
        lines.extend(
            f"{p['name']} (PID: {p['pid']}) - {p['mem_percent']:.1f}% памяти, "
            f"{p['cpu_percent']:.1f}% CPU\n"
            for p in processes[:_PROCESS_LIMIT]
        )
        return "".join(lines)

    def _kill_process(self, cmd: str) -> str:
        parts = cmd.split(" ")
        if len(parts) < 3:
            return "Пожалуйста, укажите имя процесса для завершения"
        process_name = " ".join(parts[2:])
        try:
            processes = self.system.get_running_processes()
        except SystemOperationError as exc:
            return f"Не удалось получить список процессов: {exc}"
        wanted = process_name.lower()
        pid = next((p["pid"] for p in processes if wanted in p["name"].lower()), None)
        if pid is None:
            return f"Процесс {process_name} не найден"
        try:
            self.system.kill_process(pid)
        except SystemOperationError as exc:
            return f"Не удалось завершить процесс {process_name}: {exc}"
        return f"Процесс {process_name} успешно завершен"

    def _open_url(self, cmd: str) -> str:
        parts = cmd.split(" ")
        if len(parts) < 3:
            return "Пожалуйста, укажите URL для открытия"
        url = parts[-1]
        if not url.startswith("http"):
            url = "https://" + url
        try:
            self.system.open_url(url)
        except SystemOperationError as exc:
            return f"Не удалось открыть URL {url}: {exc}"
        return f"Открываю {url}"

    def _clear_history(self) -> str:
        with self._lock:
            if self._db is None:
                return "История отключена в настройках"
            path = self.config.history_file_path
            self._db.close()
            self._db = None
            _remove_path(path)
            try:
                self._db = _HistoryStore(path)
            except (OSError, sqlite3.Error) as exc:
                return f"Не удалось очистить историю: {exc}"
            return "История успешно очищена"

    def _process_with_ai(self, command: str) -> str:
        client = self._client
        if client is None:
            return "Для обработки команд необходим API ключ OpenAI"
        system_message = (
            f"Ты - {self.config.name}, персональный голосовой ассистент для Windows. "
            "Ты можешь выполнять команды для управления компьютером, "
            "отвечать на вопросы и помогать пользователю. "
            "Отвечай кратко и по существу. "
            f"Текущее время: {datetime.now().strftime('%H:%M %d.%m.%Y')}."
        )
        body: Dict[str, Any] = {
            "model": _MODEL,
            "messages": [
                {"role": "system", "content": system_message},
                {"role": "user", "content": command},
            ],
            "temperature": _TEMPERATURE,
        }
        try:
            response = client.post(_CHAT_COMPLETIONS, json=body, timeout=_AI_TIMEOUT)
            response.raise_for_status()
            payload = response.json()
            choices = payload.get("choices") or []
            if not choices:
                return "Извините, я не смог обработать ваш запрос"
            return str(choices[0]["message"]["content"])
        except (httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError) as exc:
            raise AssistantError(f"ошибка запроса к AI: {exc}") from exc

    def _save_to_history(self, command: str, response: str) -> None:
        with self._lock:
            if self._db is None or not self.config.history_enabled:
                return
            entry = HistoryEntry(int(time.time()), command, response)
            try:
                self._db.put(str(entry.timestamp), entry.to_json())
            except sqlite3.Error as exc:
                log.error("Ошибка сохранения записи истории: %s", exc)

    def get_history(self) -> List[HistoryEntry]:
        """Return the recorded commands in key order; entries that cannot be read are skipped."""
        with self._lock:
            if self._db is None or not self.config.history_enabled:
                return []
            try:
                values = self._db.values()
            except sqlite3.Error as exc:
                raise AssistantError(f"history: {exc}") from exc
        history = []
        for value in values:
            try:
                history.append(HistoryEntry.from_json(value))
            except (ValueError, TypeError, AttributeError):
                continue
        return history