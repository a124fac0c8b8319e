import json
import threading

import httpx
import pytest

from kotai.assistant import Assistant, AssistantError, HistoryEntry
from kotai.config import AssistantConfig
from kotai.system import SystemOperationError


class FakeSystem:
    def __init__(self, processes=None, fail_open=False):
        self.opened = []
        self.urls = []
        self.volumes = []
        self.killed = []
        self.screenshots = []
        self.processes = processes or []
        self.fail_open = fail_open

    def open_application(self, app_path):
        if self.fail_open:
            raise SystemOperationError("not found")
        self.opened.append(app_path)

    def open_url(self, url):
        self.urls.append(url)

    def set_volume(self, level):
        self.volumes.append(level)

    def take_screenshot(self, file_path):
        self.screenshots.append(file_path)

    def get_system_info(self):
        gib = 1024 * 1024 * 1024
        return {
            "hostname": "testhost",
            "platform": "Linux",
            "platform_version": "6.0",
            "cpu_model": "TestCPU",
            "cpu_cores": 4,
            "used_memory": 4 * gib,
            "total_memory": 8 * gib,
            "memory_percent": 50.0,
        }

    def get_running_processes(self):
        return self.processes

    def kill_process(self, pid):
        self.killed.append(pid)


class FakeVoice:
    def __init__(self):
        self.callback = None
        self.spoken = []

    def set_command_callback(self, callback):
        self.callback = callback

    def speak(self, text):
        self.spoken.append(text)


def make_config(**overrides):
    values = dict(
        name="TestAssistant",
        openai_api_key="",
        use_local_models=False,
        history_enabled=False,
        history_file_path="",
    )
    values.update(overrides)
    return AssistantConfig(**values)


def chat_transport(content=None, choices=None, status=200, seen=None):
    def handler(request):
        if seen is not None:
            seen.append(json.loads(request.content))
        if status != 200:
            return httpx.Response(status, json={"error": "bad"})
        body_choices = choices if choices is not None else [
            {"message": {"role": "assistant", "content": content}}
        ]
        return httpx.Response(200, json={"choices": body_choices})

    return httpx.MockTransport(handler)


def test_new_assistant_keeps_config(tmp_path):
    config = make_config(
        openai_api_key="placeholder",
        history_enabled=True,
        history_file_path=str(tmp_path / "test-history.db"),
    )
    assistant = Assistant(config, FakeSystem(), FakeVoice())
    assert assistant.config.name == "TestAssistant"
    assert assistant.config.openai_api_key == "placeholder"
    assert assistant.config.use_local_models is False
    assert assistant.config.history_enabled is True
    assert assistant.config.history_file_path == str(tmp_path / "test-history.db")
    assert assistant.running is False


def test_empty_command_asks_for_command():
    assistant = Assistant(make_config(), FakeSystem())
    assert assistant.process_command("   ") == "Пожалуйста, укажите команду"


@pytest.mark.parametrize(
    "command, expected_app",
    [
        ("открой блокнот", "notepad.exe"),
        ("Запусти браузер", "chrome.exe"),
        ("открой калькулятор", "calc.exe"),
        ("открой проводник", "explorer.exe"),
        ("запусти paint", "paint"),
    ],
)
def test_open_application(command, expected_app):
    system = FakeSystem()
    assistant = Assistant(make_config(), system)
    assert assistant.handle_special_command(command) == f"Открываю {expected_app}"
    assert system.opened == [expected_app]


def test_open_without_target():
    assistant = Assistant(make_config(), FakeSystem())
    assert assistant.handle_special_command("открой") == "Пожалуйста, укажите, что нужно открыть"


def test_open_failure_reported():
    assistant = Assistant(make_config(), FakeSystem(fail_open=True))
    assert (
        assistant.handle_special_command("открой блокнот")
        == "Не удалось открыть notepad.exe: not found"
    )


@pytest.mark.parametrize(
    "command, response, level",
    [
        ("увеличь громкость", "Увеличиваю громкость", 80),
        ("убавь громкость", "Уменьшаю громкость", 20),
        ("громкость без звука", "Выключаю звук", 0),
    ],
)
def test_volume_commands(command, response, level):
    system = FakeSystem()
    assistant = Assistant(make_config(), system)
    assert assistant.handle_special_command(command) == response
    assert system.volumes == [level]


def test_volume_without_direction_is_not_special():
    system = FakeSystem()
    assistant = Assistant(make_config(), system)
    assert assistant.handle_special_command("какая громкость") is None
    assert system.volumes == []


def test_screenshot_saved_to_pictures():
    system = FakeSystem()
    assistant = Assistant(make_config(), system)
    response = assistant.handle_special_command("сделай скриншот")
    assert len(system.screenshots) == 1
    path = system.screenshots[0]
    assert "Pictures" in path and path.endswith(".png")
    assert response == f"Скриншот сохранен в {path}"


def test_system_info_formatting():
    assistant = Assistant(make_config(), FakeSystem())
    response = assistant.handle_special_command("информация о системе")
    assert response == (
        "Информация о системе:\n"
        "Хост: testhost\n"
        "ОС: Linux 6.0\n"
        "Процессор: TestCPU (4 ядер)\n"
        "Память: 4.00 ГБ / 8.00 ГБ (50.0%)\n"
    )


def test_process_list_limited_to_ten():
    processes = [
        {"pid": i, "name": f"proc{i}", "mem_percent": 1.25, "cpu_percent": 2.0}
        for i in range(1, 15)
    ]
    assistant = Assistant(make_config(), FakeSystem(processes=processes))
    response = assistant.handle_special_command("список процессов")
    lines = response.strip().split("\n")
    assert lines[0] == "Топ процессов по использованию памяти:"
    assert len(lines) == 11
    assert lines[1] == "proc1 (PID: 1) - 1.2% памяти, 2.0% CPU"


def test_kill_process_found():
    processes = [
        {"pid": 10, "name": "Other.exe", "mem_percent": 0.0, "cpu_percent": 0.0},
        {"pid": 42, "name": "Notepad.exe", "mem_percent": 0.0, "cpu_percent": 0.0},
    ]
    system = FakeSystem(processes=processes)
    assistant = Assistant(make_config(), system)
    response = assistant.handle_special_command("завершить процесс notepad")
    assert response == "Процесс notepad успешно завершен"
    assert system.killed == [42]


def test_kill_process_missing():
    system = FakeSystem(processes=[])
    assistant = Assistant(make_config(), system)
    assert assistant.handle_special_command("убить процесс ghost") == "Процесс ghost не найден"
    assert system.killed == []


def test_kill_process_requires_name():
    assistant = Assistant(make_config(), FakeSystem())
    assert (
        assistant.handle_special_command("убить процесс")
        == "Пожалуйста, укажите имя процесса для завершения"
    )


@pytest.mark.parametrize("command", ["случайная команда", "расскажи о погоде"])
def test_ordinary_commands_are_not_special(command):
    assistant = Assistant(make_config(), FakeSystem())
    assert assistant.handle_special_command(command) is None


def test_ai_without_key():
    assistant = Assistant(make_config(), FakeSystem())
    assistant.start()
    assert assistant.process_command("расскажи о погоде") == (
        "Для обработки команд необходим API ключ OpenAI"
    )
    assistant.stop()


def test_ai_answer_and_request_body():
    seen = []
    assistant = Assistant(
        make_config(openai_api_key="placeholder"),
        FakeSystem(),
        transport=chat_transport(content="Солнечно", seen=seen),
    )
    assistant.start()
    assert assistant.process_command("расскажи о погоде") == "Солнечно"
    assistant.stop()
    body = seen[0]
    assert body["model"] == "gpt-3.5-turbo"
    assert body["temperature"] == 0.7
    assert body["messages"][0]["role"] == "system"
    assert "TestAssistant" in body["messages"][0]["content"]
    assert body["messages"][1] == {"role": "user", "content": "расскажи о погоде"}


def test_ai_without_choices():
    assistant = Assistant(
        make_config(openai_api_key="placeholder"),
        FakeSystem(),
        transport=chat_transport(choices=[]),
    )
    assistant.start()
    assert assistant.process_command("вопрос") == "Извините, я не смог обработать ваш запрос"
    assistant.stop()


def test_ai_http_error_raises():
    assistant = Assistant(
        make_config(openai_api_key="placeholder"),
        FakeSystem(),
        transport=chat_transport(status=500),
    )
    assistant.start()
    with pytest.raises(AssistantError):
        assistant.process_command("вопрос")
    assistant.stop()


def test_history_records_commands(tmp_path):
    config = make_config(history_enabled=True, history_file_path=str(tmp_path / "h" / "history.db"))
    assistant = Assistant(config, FakeSystem())
    assistant.start()
    assistant.process_command("открой блокнот")
    history = assistant.get_history()
    assistant.stop()
    assert len(history) == 1
    assert history[0].command == "открой блокнот"
    assert history[0].response == "Открываю notepad.exe"
    assert history[0].timestamp > 0


def test_clear_history(tmp_path):
    config = make_config(history_enabled=True, history_file_path=str(tmp_path / "history.db"))
    assistant = Assistant(config, FakeSystem())
    assistant.start()
    assistant.process_command("открой блокнот")
    assert assistant.handle_special_command("очистить историю") == "История успешно очищена"
    assert assistant.get_history() == []
    assistant.stop()


def test_clear_history_when_disabled():
    assistant = Assistant(make_config(), FakeSystem())
    assistant.start()
    assert assistant.handle_special_command("удалить историю") == "История отключена в настройках"
    assert assistant.get_history() == []
    assistant.stop()


def test_history_entry_json_round_trip():
    entry = HistoryEntry(123, "тестовая команда", "тестовый ответ")
    assert HistoryEntry.from_json(entry.to_json()) == entry
    assert json.loads(entry.to_json()) == {
        "timestamp": 123,
        "command": "тестовая команда",
        "response": "тестовый ответ",
    }


def test_exit_command_schedules_shutdown():
    called = threading.Event()
    assistant = Assistant(make_config(), FakeSystem(), on_exit=called.set, exit_delay=0.0)
    assert assistant.handle_special_command("выход") == "Завершаю работу. До свидания!"
    assert called.wait(2.0)


def test_voice_command_is_answered_aloud():
    voice = FakeVoice()
    assistant = Assistant(make_config(), FakeSystem(), voice)
    assistant.start()
    voice.callback("открой блокнот")
    assistant.stop()
    assert voice.spoken == ["Открываю notepad.exe"]


def test_voice_command_error_apologises():
    voice = FakeVoice()
    assistant = Assistant(
        make_config(openai_api_key="placeholder"),
        FakeSystem(),
        voice,
        transport=chat_transport(status=500),
    )
    assistant.start()
    voice.callback("вопрос")
    assistant.stop()
    assert voice.spoken == ["Извините, произошла ошибка при обработке команды"]