import base64
import io
import json
import struct
import wave

import httpx
import pytest

from kotai.voice import (
    VoiceConfig,
    VoiceError,
    VoiceManager,
    audio_level,
    encode_wav,
    write_wav,
)


def make_config(**overrides):
    values = dict(
        enabled=False,
        wake_word="тест",
        language="ru-RU",
        voice_recognition="google",
        tts_provider="google",
        voice_threshold=0.5,
        silence_threshold=0.1,
        input_device="",
        output_device="",
    )
    values.update(overrides)
    return VoiceConfig(**values)


LOUD = struct.pack("<4h", 32767, -32767, 32767, -32767)
QUIET = bytes(8)


def test_new_voice_manager_keeps_config():
    config = make_config(enabled=True)
    vm = VoiceManager(config)
    assert vm.config.enabled is True
    assert vm.config.wake_word == "тест"
    assert vm.config.language == "ru-RU"
    assert vm.config.voice_recognition == "google"
    assert vm.config.tts_provider == "google"
    assert vm.config.voice_threshold == 0.5
    assert vm.config.silence_threshold == 0.1
    assert vm.wake_word_active is False
    assert vm.listening is False


def test_audio_level_values():
    assert audio_level(b"") == 0.0
    assert audio_level(struct.pack("<h", -32768)) == 1.0
    assert audio_level(struct.pack("<2h", 16384, 0)) == 0.125
    assert audio_level(struct.pack("<h", -32768) + b"\x7f") == 1.0


def test_encode_wav_round_trip():
    pcm = struct.pack("<5h", 0, 100, -100, 32767, -32768)
    encoded = encode_wav(pcm)
    assert len(encoded) == 44 + len(pcm)
    assert encoded[:4] == b"RIFF"
    assert struct.unpack("<I", encoded[4:8])[0] == len(pcm) + 36
    with wave.open(io.BytesIO(encoded)) as reader:
        assert reader.getnchannels() == 1
        assert reader.getsampwidth() == 2
        assert reader.getframerate() == 16000
        assert reader.readframes(10) == pcm


def test_write_wav(tmp_path):
    pcm = b"\x01\x00\x02\x00"
    target = tmp_path / "out.wav"
    write_wav(pcm, target)
    assert target.read_bytes() == encode_wav(pcm)


def test_feed_audio_ignores_quiet_input():
    vm = VoiceManager(make_config())
    assert all(vm.feed_audio(QUIET) is None for _ in range(40))


def test_feed_audio_returns_utterance_after_silence():
    vm = VoiceManager(make_config(voice_recognition="whisper"))
    assert vm.feed_audio(LOUD) is None
    results = [vm.feed_audio(QUIET) for _ in range(31)]
    assert results[:30] == [None] * 30
    assert results[30] == LOUD + QUIET * 31


def test_speech_resets_silence_counter():
    vm = VoiceManager(make_config(voice_recognition="whisper"))
    vm.feed_audio(LOUD)
    for _ in range(20):
        assert vm.feed_audio(QUIET) is None
    assert vm.feed_audio(LOUD) is None
    for _ in range(30):
        assert vm.feed_audio(QUIET) is None
    assert vm.feed_audio(QUIET) == LOUD + QUIET * 20 + LOUD + QUIET * 31


def test_wake_word_then_command():
    vm = VoiceManager(make_config())
    received = []
    vm.set_command_callback(received.append)

    vm.handle_transcript("Привет ТЕСТ")
    assert vm.wake_word_active is True
    assert received == []

    vm.handle_transcript("Открой Блокнот")
    assert received == ["открой блокнот"]
    assert vm.wake_word_active is False


def test_command_without_wake_word_is_ignored():
    vm = VoiceManager(make_config())
    received = []
    vm.set_command_callback(received.append)
    vm.handle_transcript("открой блокнот")
    vm.handle_transcript("")
    assert received == []
    assert vm.wake_word_active is False


def test_wake_word_stays_active_without_callback():
    vm = VoiceManager(make_config())
    vm.handle_transcript("тест")
    vm.handle_transcript("который час")
    assert vm.wake_word_active is True


def test_whisper_recognition():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["authorization"]
        seen["body"] = request.content
        return httpx.Response(200, json={"text": "привет"})

    config = make_config(voice_recognition="whisper", openai_api_key="placeholder")
    vm = VoiceManager(config, transport=httpx.MockTransport(handler))
    assert vm.recognize_speech(b"\x00\x00") == "привет"
    assert seen["auth"] == "Bearer placeholder"
    assert b"whisper-1" in seen["body"]
    assert b"RIFF" in seen["body"]


def test_google_recognition():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        seen["key"] = request.url.params["key"]
        return httpx.Response(
            200, json={"results": [{"alternatives": [{"transcript": "кот"}]}]}
        )

    config = make_config(google_api_key="placeholder")
    vm = VoiceManager(config, transport=httpx.MockTransport(handler))
    assert vm.recognize_speech(b"\x01\x02") == "кот"
    assert seen["key"] == "placeholder"
    assert seen["body"]["config"] == {
        "encoding": "LINEAR16",
        "sampleRateHertz": 16000,
        "languageCode": "ru-RU",
    }
    assert base64.b64decode(seen["body"]["audio"]["content"]) == b"\x01\x02"


def test_google_recognition_empty_results():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={}))
    vm = VoiceManager(make_config(google_api_key="placeholder"), transport=transport)
    assert vm.recognize_speech(b"\x00\x00") == ""


def test_recognition_http_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(500))
    config = make_config(voice_recognition="whisper", openai_api_key="placeholder")
    vm = VoiceManager(config, transport=transport)
    with pytest.raises(VoiceError):
        vm.recognize_speech(b"\x00\x00")


def test_recognition_without_client():
    vm = VoiceManager(make_config(voice_recognition="local"))
    with pytest.raises(VoiceError, match="OpenAI"):
        vm.recognize_speech(b"\x00\x00")
    vm = VoiceManager(make_config(voice_recognition="google"))
    with pytest.raises(VoiceError, match="Google"):
        vm.recognize_speech(b"\x00\x00")


def test_stop_releases_google_client():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={}))
    vm = VoiceManager(make_config(google_api_key="placeholder"), transport=transport)
    vm.stop()
    assert vm.listening is False
    with pytest.raises(VoiceError, match="не инициализирован"):
        vm.recognize_speech(b"\x00\x00")


def test_play_unsupported_format(tmp_path):
    target = tmp_path / "sound.txt"
    target.write_text("x")
    vm = VoiceManager(make_config())
    with pytest.raises(VoiceError, match="Неподдерживаемый формат аудио"):
        vm.play_audio_file(str(target))


def test_play_missing_file(tmp_path):
    vm = VoiceManager(make_config())
    with pytest.raises(VoiceError):
        vm.play_audio_file(str(tmp_path / "missing.wav"))