"""Web user interface: the chat page, a WebSocket command channel and the mobile page."""

import asyncio
import base64
import json
import logging
import shlex
import shutil
import tempfile
import threading
import time
import webbrowser
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Set, Tuple, Type, Union

from aiohttp import WSMsgType, web

from kotai.assistant import AssistantError
from kotai.config import UIConfig
from kotai.mobile import MobileError
from kotai.system import SystemManager, SystemOperationError

log = logging.getLogger(__name__)

_DEFAULT_MOBILE_PAGE = Path("web") / "mobile.html"
_BROWSER_DELAY = 0.5
_SHUTDOWN_TIMEOUT = 10.0
_SEND_TIMEOUT = 10.0
_NO_DEVICE = "Нет подключенного USB-устройства"

Reply = Dict[str, Any]

INDEX_HTML = """<!DOCTYPE html>
<html lang="ru">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>KOT.AI</title>
    <style>
        body {
            font-family: Arial, sans-serif;
            margin: 0;
            padding: 0;
            display: flex;
            flex-direction: column;
            height: 100vh;
            background-color: #f5f5f5;
        }
        .header {
            background-color: #4a86e8;
            color: white;
            padding: 10px 20px;
            display: flex;
            align-items: center;
            justify-content: space-between;
        }
        .header h1 {
            margin: 0;
            font-size: 24px;
        }
        .chat-container {
            flex: 1;
            display: flex;
            flex-direction: column;
            padding: 20px;
            overflow-y: auto;
        }
        .message {
            margin-bottom: 10px;
            padding: 10px 15px;
            border-radius: 5px;
            max-width: 70%;
        }
        .user-message {
            align-self: flex-end;
            background-color: #4a86e8;
            color: white;
        }
        .bot-message {
            align-self: flex-start;
            background-color: #e9e9e9;
            color: #333;
        }
        .input-container {
            display: flex;
            padding: 10px 20px;
            background-color: white;
            border-top: 1px solid #ddd;
        }
        .input-container input {
            flex: 1;
            padding: 10px;
            border: 1px solid #ddd;
            border-radius: 4px;
            margin-right: 10px;
        }
        .input-container button {
            padding: 10px 20px;
            background-color: #4a86e8;
            color: white;
            border: none;
            border-radius: 4px;
            cursor: pointer;
        }
        .input-container button:hover {
            background-color: #3a76d8;
        }
    </style>
</head>
<body>
    <div class="header">
        <h1>KOT.AI</h1>
        <div>
            <button id="settings-btn">Настройки</button>
        </div>
    </div>
    <div class="chat-container" id="chat-container">
        <div class="message bot-message">
            Привет! Я KOT.AI, ваш персональный ассистент. Чем я могу помочь?
        </div>
    </div>
    <div class="input-container">
        <input type="text" id="message-input" placeholder="Введите сообщение...">
        <button id="send-btn">Отправить</button>
    </div>

    <script>
        const chatContainer = document.getElementById('chat-container');
        const messageInput = document.getElementById('message-input');
        const sendBtn = document.getElementById('send-btn');
        const settingsBtn = document.getElementById('settings-btn');

        const ws = new WebSocket('ws://' + window.location.host + '/ws');

        ws.onopen = function() {
            console.log('WebSocket соединение установлено');
        };

        ws.onmessage = function(event) {
            const message = JSON.parse(event.data);

            switch(message.type) {
                case 'response':
                    addMessage(message.response, 'bot');
                    break;
                case 'error':
                    addMessage('Ошибка: ' + message.error, 'bot');
                    break;
                case 'history':
                    break;
                case 'config':
                    break;
            }
        };

        ws.onerror = function(error) {
            console.error('WebSocket ошибка:', error);
        };

        ws.onclose = function() {
            console.log('WebSocket соединение закрыто');
            addMessage('Соединение с сервером потеряно. Пожалуйста, обновите страницу.', 'bot');
        };

        function sendMessage() {
            const text = messageInput.value.trim();
            if (text === '') return;

            addMessage(text, 'user');

            ws.send(JSON.stringify({
                type: 'command',
                text: text
            }));

            messageInput.value = '';
        }

        function addMessage(text, sender) {
            const messageDiv = document.createElement('div');
            messageDiv.className = 'message ' + (sender === 'user' ? 'user-message' : 'bot-message');
            messageDiv.textContent = text;

            chatContainer.appendChild(messageDiv);
            chatContainer.scrollTop = chatContainer.scrollHeight;
        }

        sendBtn.addEventListener('click', sendMessage);

        messageInput.addEventListener('keypress', function(e) {
            if (e.key === 'Enter') {
                sendMessage();
            }
        });

        settingsBtn.addEventListener('click', function() {
            alert('Настройки пока не реализованы');
        });
    </script>
</body>
</html>
"""


def _error(key: str, exc: Union[Exception, str]) -> Reply:
    return {"type": "error", key: str(exc)}


class UIManager:
    """Serves the web interface and relays client messages to the assistant."""

    def __init__(
        self,
        config: UIConfig,
        assistant: Any,
        mobile_manager: Any = None,
        system: Any = None,
        mobile_page: Optional[Union[str, Path]] = None,
    ) -> None:
        self.config = config
        self.assistant = assistant
        self.mobile_manager = mobile_manager
        self.system = system if system is not None else SystemManager()
        self.mobile_page = Path(mobile_page) if mobile_page is not None else _DEFAULT_MOBILE_PAGE
        self.running = False
        self._clients: Set[web.WebSocketResponse] = set()
        self._clients_lock = threading.Lock()
        self._web_dir: Optional[Path] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._runner: Optional[web.AppRunner] = None

    # Lifecycle

    def start(self) -> None:
        """Start the interface of the configured type; does nothing when disabled."""
        if not self.config.enabled:
            log.info("Пользовательский интерфейс отключен в настройках")
            return
        if self.config.ui_type == "console":
            self.running = True
            return
        # "web", "tray" and anything unknown all use the web interface.
        self._start_web_ui()

    def _start_web_ui(self) -> None:
        app = self.make_app()
        loop = asyncio.new_event_loop()
        ready = threading.Event()
        url = f"http://localhost:{self.config.web_port}"

        def serve() -> None:
            asyncio.set_event_loop(loop)
            try:
                loop.run_until_complete(self._serve(app))
            except OSError as exc:
                log.error("Ошибка HTTP сервера: %s", exc)
            else:
                log.info("Веб-интерфейс запущен на %s", url)
            finally:
                ready.set()
            if self._runner is not None:
                loop.run_forever()
            loop.close()

        self._thread = threading.Thread(target=serve, name="kotai-web", daemon=True)
        self._thread.start()
        ready.wait()
        if self._runner is not None:
            self._loop = loop

        if not self.config.start_minimized:
            threading.Thread(target=self._open_browser, args=(url,), daemon=True).start()

        self.running = True

    async def _serve(self, app: web.Application) -> None:
        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, port=self.config.web_port)
        try:
            await site.start()
        except OSError:
            await runner.cleanup()
            raise
        self._runner = runner

    @staticmethod
    def _open_browser(url: str) -> None:
        time.sleep(_BROWSER_DELAY)
        if not webbrowser.open(url):
            log.warning("Не удалось запустить браузер для %s", url)

    def stop(self) -> None:
        """Close every client connection, stop the server and remove the page files."""
        self.running = False
        loop, thread = self._loop, self._thread
        self._loop = None
        self._thread = None
        if loop is not None:
            future = asyncio.run_coroutine_threadsafe(self._shutdown(), loop)
            try:
                future.result(timeout=_SHUTDOWN_TIMEOUT)
            except Exception as exc:  # shutdown must always finish
                log.warning("Ошибка при остановке HTTP сервера: %s", exc)
            loop.call_soon_threadsafe(loop.stop)
        if thread is not None:
            thread.join(timeout=_SHUTDOWN_TIMEOUT)
        with self._clients_lock:
            self._clients.clear()
        if self._web_dir is not None:
            shutil.rmtree(self._web_dir, ignore_errors=True)
            self._web_dir = None

    async def _shutdown(self) -> None:
        with self._clients_lock:
            clients = list(self._clients)
        for ws in clients:
            await ws.close()
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

    # HTTP application

    def _prepare_web_dir(self) -> Path:
        directory = Path(tempfile.mkdtemp(prefix="kot_web"))
        (directory / "index.html").write_text(INDEX_HTML, encoding="utf-8")
        return directory

    def make_app(self) -> web.Application:
        """Build the web application: page files, /ws and /mobile."""
        if self._web_dir is None:
            self._web_dir = self._prepare_web_dir()
        app = web.Application()
        app.router.add_get("/ws", self._handle_websocket)
        app.router.add_get("/mobile", self._handle_mobile_ui)
        app.router.add_get("/{path:.*}", self._serve_file)
        return app

    async def _serve_file(self, request: web.Request) -> web.StreamResponse:
        if self._web_dir is None:
            raise web.HTTPNotFound()
        base = self._web_dir.resolve()
        target = (base / request.match_info["path"]).resolve()
        if target != base and base not in target.parents:
            raise web.HTTPNotFound()
        if target.is_dir():
            target = target / "index.html"
        if not target.is_file():
            raise web.HTTPNotFound()
        return web.FileResponse(target)

    async def _handle_mobile_ui(self, request: web.Request) -> web.Response:
        try:
            page = self.mobile_page.read_bytes()
        except OSError as exc:
            log.error("Ошибка чтения файла мобильного интерфейса: %s", exc)
            return web.Response(status=500, text="Ошибка загрузки мобильного интерфейса")
        return web.Response(body=page, content_type="text/html", charset="utf-8")

    async def _handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        loop = asyncio.get_running_loop()
        with self._clients_lock:
            self._clients.add(ws)
        try:
            async for msg in ws:
                if msg.type == WSMsgType.ERROR:
                    log.error("Ошибка WebSocket: %s", ws.exception())
                    break
                if msg.type not in (WSMsgType.TEXT, WSMsgType.BINARY):
                    continue
                try:
                    message = json.loads(msg.data)
                except ValueError:
                    break
                if not isinstance(message, dict):
                    break
                reply = await loop.run_in_executor(None, self.process_message, message)
                if reply is None:
                    continue
                try:
                    await ws.send_json(reply)
                except ConnectionError:
                    break
        finally:
            with self._clients_lock:
                self._clients.discard(ws)
            await ws.close()
        return ws

    # Messaging

    def send_message(self, message: Mapping[str, Any]) -> int:
        """Send a message to every connected client; return how many received it."""
        loop = self._loop
        with self._clients_lock:
            clients = list(self._clients)
        if loop is None or not clients:
            return 0
        if threading.current_thread() is self._thread:
            raise RuntimeError("send_message cannot be called from the server thread")
        future = asyncio.run_coroutine_threadsafe(self._broadcast(dict(message), clients), loop)
        return future.result(timeout=_SEND_TIMEOUT)

    async def _broadcast(self, message: Reply, clients: list) -> int:
        sent = 0
        for ws in clients:
            try:
                await ws.send_json(message)
            except (ConnectionError, RuntimeError) as exc:
                log.error("Ошибка отправки сообщения: %s", exc)
                with self._clients_lock:
                    self._clients.discard(ws)
                await ws.close()
                continue
            sent += 1
        return sent

    def process_message(self, message: Mapping[str, Any]) -> Optional[Reply]:
        """Handle one client message and return the reply to send, or None."""
        kind = message.get("type") if isinstance(message, Mapping) else None
        if not isinstance(kind, str):
            return None
        match kind:
            case "command":
                return self._on_command(message)
            case "get_history":
                return self._on_get_history()
            case "get_config":
                return {"type": "config", "config": asdict(self.config)}
            case "chat":
                return self._on_chat(message)
            case "system_info":
                return self._on_system_info()
            case "execute":
                return self._on_execute(message)
            case "screenshot":
                return self._capture(
                    "kot_screenshot", self.system.take_screenshot, (SystemOperationError,)
                )
            case "mobile_command":
                return self._on_mobile_command(message)
            case "mobile_screenshot":
                return self._on_mobile_screenshot()
            case _:
                log.warning("Неизвестный тип сообщения: %s", kind)
                return None

    def _on_command(self, message: Mapping[str, Any]) -> Optional[Reply]:
        text = message.get("text")
        if not isinstance(text, str):
            return None
        try:
            response = self.assistant.process_command(text)
        except AssistantError as exc:
            log.error("Ошибка обработки команды: %s", exc)
            return _error("error", exc)
        return {"type": "response", "response": response}

    def _on_get_history(self) -> Reply:
        try:
            history = self.assistant.get_history()
        except AssistantError as exc:
            log.error("Ошибка получения истории: %s", exc)
            return _error("error", exc)
        return {"type": "history", "history": [asdict(entry) for entry in history]}

    def _on_chat(self, message: Mapping[str, Any]) -> Optional[Reply]:
        text = message.get("message")
        if not isinstance(text, str):
            return None
        try:
            response = self.assistant.process_command(text)
        except AssistantError as exc:
            log.error("Ошибка обработки сообщения: %s", exc)
            return _error("message", exc)
        return {"type": "chat", "message": response}

    def _on_system_info(self) -> Reply:
        try:
            info = self.system.get_system_info()
        except SystemOperationError as exc:
            log.error("Ошибка получения информации о системе: %s", exc)
            return _error("message", exc)
        return {"type": "system_info", "info": info}

    def _on_execute(self, message: Mapping[str, Any]) -> Optional[Reply]:
        command = message.get("command")
        if not isinstance(command, str):
            return None
        try:
            parts = shlex.split(command)
        except ValueError as exc:
            return _error("message", exc)
        if not parts:
            return _error("message", "пустая команда")
        try:
            output = self.system.run_command(*parts)
        except SystemOperationError as exc:
            log.error("Ошибка выполнения команды: %s", exc)
            return _error("message", exc)
        return {"type": "command_result", "result": output}

    def _on_mobile_command(self, message: Mapping[str, Any]) -> Optional[Reply]:
        command = message.get("command")
        if not isinstance(command, str) or self.mobile_manager is None:
            return None
        if not self.mobile_manager.is_connected_usb():
            return _error("message", _NO_DEVICE)
        try:
            output = self.mobile_manager.execute_command(command)
        except MobileError as exc:
            log.error("Ошибка выполнения команды на устройстве: %s", exc)
            return _error("message", exc)
        return {"type": "command_result", "result": output}

    def _on_mobile_screenshot(self) -> Reply:
        if self.mobile_manager is None or not self.mobile_manager.is_connected_usb():
            return _error("message", _NO_DEVICE)
        return self._capture(
            "kot_mobile_screenshot", self.mobile_manager.take_screenshot, (MobileError,)
        )

    @staticmethod
    def _capture(
        prefix: str,
        capture: Callable[[str], None],
        errors: Tuple[Type[Exception], ...],
    ) -> Reply:
        path = Path(tempfile.gettempdir()) / f"{prefix}_{int(time.time())}.png"
        try:
            capture(str(path))
        except errors as exc:
            log.error("Ошибка создания скриншота: %s", exc)
            return _error("message", exc)
        try:
            data = path.read_bytes()
        except OSError as exc:
            log.error("Ошибка чтения скриншота: %s", exc)
            return _error("message", exc)
        path.unlink(missing_ok=True)
        return {"type": "screenshot", "data": base64.b64encode(data).decode("ascii")}