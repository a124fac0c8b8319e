"""Voice input and output: capture, utterance detection, recognition and speech."""

import base64
import hashlib
import logging
import math
import queue
import struct
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

import httpx

from kotai import config as _config

log = logging.getLogger(__name__)

SAMPLE_RATE = 16000
_BYTES_PER_SAMPLE = 2
_SILENCE_CHUNKS = 30  # roughly one second of silence ends an utterance
_QUEUE_SIZE = 10
_CAPTURE_CHUNK = 512
_TTS_FOLDER = "audio"

_OPENAI_TRANSCRIPTIONS = "https://api.openai.com/v1/audio/transcriptions"
_GOOGLE_RECOGNIZE = "https://speech.googleapis.com/v1/speech:recognize"
_TTS_ENDPOINT = "https://translate.google.com/translate_tts"

PathLike = Union[str, Path]


@dataclass
class VoiceConfig(_config.VoiceConfig):
    """Voice settings together with the keys of the recognition services."""

    openai_api_key: str = ""
    google_api_key: str = ""


class VoiceError(Exception):
    """A voice operation failed."""


def audio_level(data: bytes) -> float:
    """Mean power of signed 16-bit little-endian samples, normalised to [0, 1]."""
    count = len(data) // _BYTES_PER_SAMPLE
    if count == 0:
        return 0.0
    total = math.fsum(
        (sample / 32768.0) ** 2
        for (sample,) in struct.iter_unpack("<h", data[: count * _BYTES_PER_SAMPLE])
    )
    return total / count


def encode_wav(audio_data: bytes) -> bytes:
    """Wrap raw 16 kHz mono 16-bit PCM in a WAV container."""
    size = len(audio_data)
    header = struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        size + 36,
        b"WAVE",
        b"fmt ",
        16,
        1,
        1,
        SAMPLE_RATE,
        SAMPLE_RATE * _BYTES_PER_SAMPLE,
        _BYTES_PER_SAMPLE,
        16,
        b"data",
        size,
    )
    return header + bytes(audio_data)


def write_wav(audio_data: bytes, file_path: PathLike) -> None:
    """Save raw PCM audio as a WAV file."""
    try:
        Path(file_path).write_bytes(encode_wav(audio_data))
    except OSError as exc:
        raise VoiceError(str(exc)) from exc


class VoiceManager:
    """Listens to the microphone, detects the wake word and dispatches commands."""

    def __init__(
        self, config: VoiceConfig, transport: Optional[httpx.BaseTransport] = None
    ) -> None:
        self.config = config
        self._transport = transport
        self._lock = threading.Lock()
        self._queue: "queue.Queue[bytes]" = queue.Queue(maxsize=_QUEUE_SIZE)
        self._listening = False
        self._processing = False
        self._wake_word_active = False
        self._callback: Optional[Callable[[str], None]] = None
        self._device = None
        self._worker: Optional[threading.Thread] = None
        self._recording = False
        self._buffer = bytearray()
        self._silence = 0

        self._openai: Optional[httpx.Client] = None
        self._google: Optional[httpx.Client] = None
        if config.voice_recognition == "whisper" and config.openai_api_key:
            self._openai = httpx.Client(
                headers={"Authorization": f"Bearer {config.openai_api_key}"},
                transport=transport,
                timeout=60.0,
            )
        uses_google = config.voice_recognition == "google" or config.tts_provider == "google"
        if uses_google and config.google_api_key:
            self._google = httpx.Client(
                params={"key": config.google_api_key},
                transport=transport,
                timeout=30.0,
            )
        self._tts = httpx.Client(transport=transport, timeout=30.0)

    @property
    def wake_word_active(self) -> bool:
        """Whether the wake word was heard and the next phrase is a command."""
        return self._wake_word_active

    @property
    def listening(self) -> bool:
        """Whether captured audio is being processed."""
        return self._listening

    def start(self) -> None:
        """Open the capture device and start processing audio in the background."""
        if not self.config.enabled:
            log.info("Голосовой модуль отключен в настройках")
            return
        self._device = self._open_capture()
        self._listening = True
        self._worker = threading.Thread(target=self._run, daemon=True)
        self._worker.start()

    def _open_capture(self):
        try:
            import pygame
            from pygame._sdl2 import audio as sdl_audio
        except ImportError as exc:
            raise VoiceError(f"аудио недоступно: {exc}") from exc
        try:
            if not pygame.mixer.get_init():
                pygame.mixer.init()
            names = list(sdl_audio.get_audio_device_names(True))
            if not names:
                raise VoiceError("не найдено устройств записи звука")
            name = self.config.input_device if self.config.input_device in names else names[0]
            device = sdl_audio.AudioDevice(
                devicename=name,
                iscapture=True,
                frequency=SAMPLE_RATE,
                audioformat=sdl_audio.AUDIO_S16,
                numchannels=1,
                chunksize=_CAPTURE_CHUNK,
                allowed_changes=0,
                callback=self._on_capture,
            )
            device.pause(0)
        except pygame.error as exc:
            raise VoiceError(str(exc)) from exc
        return device

    def stop(self) -> None:
        """Stop capturing and release the recognition service connection."""
        with self._lock:
            if self._device is not None:
                try:
                    self._device.pause(1)
                    self._device.close()
                except Exception as exc:  # device teardown must not block shutdown
                    log.warning("Ошибка при закрытии аудиоустройства: %s", exc)
                self._device = None
            if self._google is not None:
                self._google.close()
                self._google = None
            self._listening = False
            self._processing = False
            worker, self._worker = self._worker, None
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout=1.0)

    def set_command_callback(self, callback: Callable[[str], None]) -> None:
        """Set the function that receives recognised commands."""
        self._callback = callback

    def speak(self, text: str) -> None:
        """Say the text aloud; does nothing when the module is disabled."""
        if not self.config.enabled:
            return
        # Both providers go through the same synthesis engine.
        self.play_audio_file(self._synthesize(text))

    def _synthesize(self, text: str) -> Path:
        folder = Path(_TTS_FOLDER)
        target = folder / (hashlib.md5(text.encode("utf-8")).hexdigest() + ".mp3")
        if target.exists():
            return target
        try:
            folder.mkdir(parents=True, exist_ok=True)
            response = self._tts.get(
                _TTS_ENDPOINT,
                params={
                    "ie": "UTF-8",
                    "total": "1",
                    "idx": "0",
                    "textlen": "32",
                    "client": "tw-ob",
                    "q": text,
                    "tl": self.config.language,
                },
            )
            response.raise_for_status()
            target.write_bytes(response.content)
        except (httpx.HTTPError, OSError) as exc:
            raise VoiceError(f"ошибка синтеза речи: {exc}") from exc
        return target

    def _on_capture(self, device, memory) -> None:
        if not self._listening:
            return
        try:
            self._queue.put_nowait(bytes(memory))
        except queue.Full:
            pass

    def _run(self) -> None:
        while self._listening:
            try:
                data = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            self.feed_audio(data)

    def feed_audio(self, data: bytes) -> Optional[bytes]:
        """Process one chunk of captured audio.

        Returns the finished utterance when enough silence has followed speech,
        and hands it to recognition in the background; otherwise returns None.
        """
        level = audio_level(data)
        if not self._recording and level > self.config.voice_threshold:
            self._recording = True
            self._buffer = bytearray()
            self._silence = 0
        if not self._recording:
            return None

        self._buffer += data
        if level < self.config.silence_threshold:
            self._silence += 1
        else:
            self._silence = 0

        if self._silence <= _SILENCE_CHUNKS:
            return None
        self._recording = False
        utterance = bytes(self._buffer)
        threading.Thread(target=self._process_utterance, args=(utterance,), daemon=True).start()
        return utterance

    def _process_utterance(self, audio: bytes) -> None:
        with self._lock:
            if self._processing:
                return
            self._processing = True
        try:
            try:
                text = self.recognize_speech(audio)
            except VoiceError as exc:
                log.error("Ошибка распознавания речи: %s", exc)
                return
            self.handle_transcript(text)
        finally:
            with self._lock:
                self._processing = False

    def handle_transcript(self, text: str) -> None:
        """React to recognised text: wait for the wake word, then pass on a command."""
        if not text:
            return
        text = text.lower()
        log.info("Распознано: %s", text)
        if not self._wake_word_active:
            if self.config.wake_word.lower() in text:
                self._wake_word_active = True
                try:
                    self.speak("Слушаю")
                except VoiceError as exc:
                    log.warning("Ошибка воспроизведения: %s", exc)
            return
        if self._callback is not None:
            self._callback(text)
            self._wake_word_active = False

    def recognize_speech(self, audio_data: bytes) -> str:
        """Turn raw PCM audio into text with the configured service."""
        if self.config.voice_recognition == "google":
            return self._recognize_google(audio_data)
        return self._recognize_whisper(audio_data)

    def _recognize_whisper(self, audio_data: bytes) -> str:
        client = self._openai
        if client is None:
            raise VoiceError("OpenAI клиент не инициализирован")
        try:
            response = client.post(
                _OPENAI_TRANSCRIPTIONS,
                data={"model": "whisper-1"},
                files={"file": ("audio.wav", encode_wav(audio_data), "audio/wav")},
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise VoiceError(f"ошибка распознавания: {exc}") from exc
        return str(payload.get("text", ""))

    def _recognize_google(self, audio_data: bytes) -> str:
        client = self._google
        if client is None:
            raise VoiceError("Google Speech клиент не инициализирован")
        body = {
            "config": {
                "encoding": "LINEAR16",
                "sampleRateHertz": SAMPLE_RATE,
                "languageCode": self.config.language,
            },
            "audio": {"content": base64.b64encode(audio_data).decode("ascii")},
        }
        try:
            response = client.post(_GOOGLE_RECOGNIZE, json=body)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise VoiceError(f"ошибка распознавания: {exc}") from exc
        results = payload.get("results") or []
        if not results:
            return ""
        alternatives = results[0].get("alternatives") or []
        if not alternatives:
            return ""
        return str(alternatives[0].get("transcript", ""))

    def play_audio_file(self, file_path: PathLike) -> None:
        """Play an MP3 or WAV file and wait until it finishes."""
        try:
            with open(file_path, "rb"):
                pass
        except OSError as exc:
            raise VoiceError(str(exc)) from exc
        if Path(file_path).suffix not in (".mp3", ".wav"):
            raise VoiceError("Неподдерживаемый формат аудио")
        try:
            import pygame
        except ImportError as exc:
            raise VoiceError(f"аудио недоступно: {exc}") from exc
        try:
            if not pygame.mixer.get_init():
                pygame.mixer.init()
            pygame.mixer.music.load(str(file_path))
            pygame.mixer.music.play()
            while pygame.mixer.music.get_busy():
                time.sleep(0.05)
        except pygame.error as exc:
            raise VoiceError(str(exc)) from exc