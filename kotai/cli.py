"""Command-line entry point: start the assistant and run until interrupted."""

import argparse
import logging
import signal
import sys
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

from kotai import config as _config
from kotai.assistant import Assistant, AssistantError
from kotai.mobile import MobileError, MobileManager
from kotai.system import SystemManager
from kotai.ui import UIManager
from kotai.voice import VoiceConfig, VoiceError, VoiceManager

log = logging.getLogger(__name__)

LOG_FILE = Path("kot.log")
_LOG_FORMAT = "%(asctime)s %(message)s"
_LOG_DATE_FORMAT = "%Y/%m/%d %H:%M:%S"
_POLL_INTERVAL = 0.5

Components = Tuple[VoiceManager, MobileManager, Assistant, UIManager]


@contextmanager
def _log_to_file(path: Path) -> Iterator[logging.Handler]:
    """Append log records to a file for the duration of the block."""
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setFormatter(logging.Formatter(_LOG_FORMAT, _LOG_DATE_FORMAT))
    root = logging.getLogger()
    previous_level = root.level
    root.addHandler(handler)
    root.setLevel(logging.INFO)
    try:
        yield handler
    finally:
        root.removeHandler(handler)
        root.setLevel(previous_level)
        handler.close()


@contextmanager
def _shutdown_signals(stop: threading.Event) -> Iterator[threading.Event]:
    """Set ``stop`` on SIGINT or SIGTERM; previous handlers come back afterwards."""

    def handle(signum, frame) -> None:
        stop.set()

    previous = {sig: signal.signal(sig, handle) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield stop
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def _load_config() -> _config.Config:
    """Read the configuration, writing the defaults first when there is none."""
    path = Path(_config.get_config_path())
    path.parent.mkdir(parents=True, exist_ok=True)
    if not path.exists():
        cfg = _config.default_config()
        cfg.save(path)
        return cfg
    return _config.load(path)


def _build_components(cfg: _config.Config, system: SystemManager) -> Components:
    """Create the voice, mobile, assistant and interface managers from a configuration."""
    data = cfg.to_dict()
    assistant_config = _config.AssistantConfig(**data["assistant"])
    voice_config = VoiceConfig(
        **{
            **data["voice"],
            "openai_api_key": assistant_config.openai_api_key,
            "google_api_key": assistant_config.google_api_key,
        }
    )
    voice = VoiceManager(voice_config)
    mobile = MobileManager(_config.MobileConfig(**data["mobile"]))
    assistant = Assistant(assistant_config, system, voice)
    ui = UIManager(_config.UIConfig(**data["ui"]), assistant, mobile, system=system)
    return voice, mobile, assistant, ui


def _fatal(message: str) -> int:
    log.critical(message)
    print(message, file=sys.stderr)
    return 1


def _run(system: SystemManager) -> int:
    log.info("Запуск KOT.AI...")
    stop = threading.Event()
    with _shutdown_signals(stop):
        try:
            cfg = _load_config()
        except Exception as exc:  # any unreadable configuration is fatal
            return _fatal(f"Ошибка при загрузке конфигурации: {exc}")

        voice, mobile, assistant, ui = _build_components(cfg, system)

        try:
            voice.start()
        except VoiceError as exc:
            log.warning("Предупреждение: не удалось запустить голосовой модуль: %s", exc)

        try:
            mobile.start()
        except MobileError as exc:
            log.warning(
                "Предупреждение: не удалось запустить модуль мобильного управления: %s", exc
            )

        try:
            ui.start()
        except (OSError, RuntimeError) as exc:
            return _fatal(f"Ошибка при запуске UI: {exc}")

        try:
            assistant.start()
        except AssistantError as exc:
            return _fatal(f"Ошибка при запуске ассистента: {exc}")

        print("KOT.AI запущен и готов к работе!")
        print("Нажмите Ctrl+C для завершения работы.")
        sys.stdout.flush()

        while not stop.wait(_POLL_INTERVAL):
            pass

    print("\nЗавершение работы KOT.AI...")
    assistant.stop()
    ui.stop()
    voice.stop()
    mobile.stop()
    log.info("KOT.AI успешно завершил работу.")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the assistant, or with --status print the installation health check."""
    parser = argparse.ArgumentParser(prog="kotai", description="Personal voice assistant.")
    parser.add_argument(
        "-status", "--status", action="store_true", help="Check application status"
    )
    args = parser.parse_args(list(argv) if argv is not None else None)

    system = SystemManager()
    if args.status:
        system.print_status()
        return 0

    try:
        logging_context = _log_to_file(LOG_FILE)
        handler = logging_context.__enter__()
    except OSError as exc:
        print(f"Ошибка при открытии файла лога: {exc}", file=sys.stderr)
        return 1
    try:
        return _run(system)
    finally:
        logging_context.__exit__(None, None, None)


if __name__ == "__main__":
    sys.exit(main())