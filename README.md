# kotai

A personal voice assistant for the desktop, driven by Russian-language
commands. It listens to the microphone for a wake word, answers built-in
commands (open an application or a site, change the volume, take a
screenshot, show system information, list or kill processes, clear the
history, exit) and sends anything else to an OpenAI chat model. It keeps a
history of commands in a local SQLite file, serves a small web chat page
with a WebSocket channel, and can run shell commands on an Android device
over ADB.

## Installation

```
pip install .
```

For the tests:

```
pip install ".[test]"
pytest
```

## Running

```
kotai
```

On start the assistant appends its log to `kot.log` in the current
directory and reads `~/.kot.ai/config.json`; when that file does not exist
it is written with the defaults first. The voice, mobile, web interface and
assistant parts are then started. A voice or mobile part that fails to
start is logged as a warning and the rest keeps running. Press Ctrl+C (or
send SIGTERM) to stop.

```
kotai --status
```

Prints a health check and exits: whether the executable, the `~/.kot.ai`
directory, `config.json` and `history.db` are present, the Python version,
counts of OK / warning / error lines and an overall verdict (HEALTHY,
WARNING or CRITICAL).

## Configuration

`~/.kot.ai/config.json` has four sections. Fields missing from the file
take empty or zero values, not the defaults.

- `assistant`: `name`, `openai_api_key`, `google_api_key`,
  `history_enabled`, `history_file_path` (default `~/.kot.ai/history.db`).
- `voice`: `enabled`, `wake_word` (default `кот`), `language` (default
  `ru-RU`), `voice_recognition` (`google` or `whisper`), `tts_provider`,
  `voice_threshold`, `silence_threshold`, `input_device`.
- `ui`: `enabled`, `ui_type` (`web`, `tray` or `console`), `web_port`
  (default 8080), `theme`, `start_minimized`.
- `mobile`: `enabled`, `usb_enabled`, `adb_path`, `auto_connect`.

## What each part does

- **Voice** (`kotai.voice.VoiceManager`): captures 16 kHz mono audio with
  pygame, cuts it into utterances by level thresholds (about one second of
  silence ends one), and recognises them with the Google Speech REST API
  or OpenAI Whisper. After the wake word is heard it says «Слушаю» and
  hands the next phrase to the assistant. Speech is synthesised through
  the Google Translate speech endpoint, cached as MP3 files in `./audio`,
  and played with pygame. `audio_level`, `encode_wav` and `write_wav` are
  available as plain functions.
- **Assistant** (`kotai.assistant.Assistant`): `process_command` answers
  a command, `handle_special_command` handles only the built-in ones (and
  returns `None` otherwise), `get_history` returns `HistoryEntry` records.
  Without an OpenAI key, non-built-in commands get a fixed reply asking
  for one.
- **System** (`kotai.system.SystemManager`): `run_command`,
  `open_application`, `open_url`, `get_system_info`,
  `get_running_processes`, `kill_process`, `set_volume`, `toggle_mute`,
  `take_screenshot`, `check_status`, `print_status`. Failures raise
  `SystemOperationError`.
- **Mobile** (`kotai.mobile.MobileManager`): finds `adb`, lists ready
  devices (`get_connected_devices`, `parse_devices`), connects to one, and
  runs `execute_command`, `push_file`, `pull_file` and `take_screenshot`
  on it. Failures raise `MobileError`.
- **Web interface** (`kotai.ui.UIManager`): an aiohttp server on
  `web_port` serving the chat page at `/`, a WebSocket at `/ws` and a
  mobile page at `/mobile`. The WebSocket accepts JSON messages of type
  `command`, `chat`, `get_history`, `get_config`, `system_info`,
  `execute`, `screenshot`, `mobile_command` and `mobile_screenshot`.
  Unless `start_minimized` is set, the page is opened in the default
  browser.

## Using it as a library

```python
from kotai.config import load
from kotai.system import SystemManager
from kotai.assistant import Assistant

config = load()                      # writes the defaults if no file exists
system = SystemManager()
print(system.check_status().summary())

assistant = Assistant(config.assistant, system)
assistant.start()
print(assistant.process_command("системная информация"))
assistant.stop()
```

## What it does not do

- Volume control, muting, screenshots and opening URLs go through
  `powershell` and `rundll32`, so they work on Windows only; elsewhere
  they raise `SystemOperationError`.
- There is no tray icon: `ui_type` `tray` runs the same web interface.
  `console` starts no interface at all. The settings button on the chat
  page only shows a notice, and `theme` is not applied.
- The `/mobile` page is read from `web/mobile.html` in the current
  directory; no such page ships with the package, so the route answers
  with an error unless one is supplied (`UIManager(..., mobile_page=...)`).
- There is no local speech recognition or local model: `use_local_models`
  and `local_model_path` are not used, and any `voice_recognition` value
  other than `google` uses Whisper. The output device setting, and the
  mobile `webui_enabled` / `webui_port` settings, are not used either.
- Voice capture needs a working SDL audio capture device; without one the
  voice part logs a warning and stays off.