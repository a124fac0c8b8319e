"""Application configuration: defaults, loading and saving as JSON."""

import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping, Optional, Union

CONFIG_DIR_NAME = ".kot.ai"
CONFIG_FILE_NAME = "config.json"
HISTORY_FILE_NAME = "history.db"

PathLike = Union[str, Path]


def get_config_dir() -> Path:
    """Directory holding the configuration and history files."""
    return Path.home() / CONFIG_DIR_NAME


def get_config_path() -> Path:
    """Default location of the configuration file."""
    return get_config_dir() / CONFIG_FILE_NAME


def _coerce(value: Any, kind: type, where: str) -> Any:
    if kind is bool:
        if isinstance(value, bool):
            return value
    elif kind is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    elif kind is float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif kind is str:
        if isinstance(value, str):
            return value
    raise ValueError(f"{where}: expected {kind.__name__}, got {type(value).__name__}")


class _Section:
    """Shared decoding for configuration sections."""

    @classmethod
    def _from_mapping(cls, data: Any, section: str):
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ValueError(f"{section}: expected an object, got {type(data).__name__}")
        values = {
            f.name: _coerce(data[f.name], f.type, f"{section}.{f.name}")
            for f in fields(cls)
            if data.get(f.name) is not None
        }
        return cls(**values)


@dataclass
class AssistantConfig(_Section):
    """Settings of the assistant core."""

    name: str = ""
    openai_api_key: str = ""
    google_api_key: str = ""
    use_local_models: bool = False
    local_model_path: str = ""
    history_enabled: bool = False
    history_file_path: str = ""


@dataclass
class VoiceConfig(_Section):
    """Settings of the voice module."""

    enabled: bool = False
    wake_word: str = ""
    language: str = ""
    voice_recognition: str = ""  # google, local, whisper
    tts_provider: str = ""  # google, local
    voice_threshold: float = 0.0
    silence_threshold: float = 0.0
    input_device: str = ""
    output_device: str = ""


@dataclass
class UIConfig(_Section):
    """Settings of the user interface."""

    enabled: bool = False
    ui_type: str = ""  # web, tray, console
    web_port: int = 0
    theme: str = ""
    start_minimized: bool = False


@dataclass
class MobileConfig(_Section):
    """Settings of the mobile device connection."""

    enabled: bool = False
    usb_enabled: bool = False
    adb_path: str = ""
    webui_enabled: bool = False
    webui_port: int = 0
    auto_connect: bool = False


_SECTIONS = {
    "assistant": AssistantConfig,
    "voice": VoiceConfig,
    "ui": UIConfig,
    "mobile": MobileConfig,
}


@dataclass
class Config:
    """Complete application configuration.

    Fields missing from a loaded file keep their zero values, not the defaults.
    """

    assistant: AssistantConfig = field(default_factory=AssistantConfig)
    voice: VoiceConfig = field(default_factory=VoiceConfig)
    ui: UIConfig = field(default_factory=UIConfig)
    mobile: MobileConfig = field(default_factory=MobileConfig)

    def to_dict(self) -> dict:
        """Return the configuration as a JSON-ready dictionary."""
        return {name: asdict(getattr(self, name)) for name in _SECTIONS}

    @classmethod
    def from_dict(cls, data: Any) -> "Config":
        """Build a configuration from decoded JSON; raise ValueError on bad types."""
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ValueError(f"configuration: expected an object, got {type(data).__name__}")
        return cls(
            **{
                name: section._from_mapping(data.get(name), name)
                for name, section in _SECTIONS.items()
            }
        )

    def save(self, path: Optional[PathLike] = None) -> None:
        """Write the configuration as indented JSON, creating the directory if needed."""
        target = Path(path) if path is not None else get_config_path()
        target.parent.mkdir(parents=True, exist_ok=True)
        text = json.dumps(self.to_dict(), indent=2, ensure_ascii=False)
        target.write_text(text, encoding="utf-8")


def default_config() -> Config:
    """Return the built-in default configuration."""
    history_path = get_config_dir() / HISTORY_FILE_NAME
    return Config(
        assistant=AssistantConfig(
            name="KOT.AI",
            openai_api_key="",
            google_api_key="",
            use_local_models=False,
            local_model_path="",
            history_enabled=True,
            history_file_path=str(history_path),
        ),
        voice=VoiceConfig(
            enabled=True,
            wake_word="кот",
            language="ru-RU",
            voice_recognition="google",
            tts_provider="google",
            voice_threshold=0.5,
            silence_threshold=0.1,
            input_device="",
            output_device="",
        ),
        ui=UIConfig(
            enabled=True,
            ui_type="web",
            web_port=8080,
            theme="dark",
            start_minimized=False,
        ),
        mobile=MobileConfig(
            enabled=False,
            usb_enabled=True,
            adb_path="",
            webui_enabled=True,
            webui_port=8081,
            auto_connect=False,
        ),
    )


def load(path: Optional[PathLike] = None) -> Config:
    """Load the configuration file, writing the defaults there first if it is missing."""
    target = Path(path) if path is not None else get_config_path()
    target.parent.mkdir(parents=True, exist_ok=True)
    if not target.exists():
        cfg = default_config()
        cfg.save(target)
        return cfg
    data = json.loads(target.read_text(encoding="utf-8"))
    return Config.from_dict(data)