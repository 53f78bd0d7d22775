"""A tone-based text-to-speech stand-in that renders WAV audio."""

from __future__ import annotations

import io
import math
import struct
import wave
from dataclasses import dataclass
from typing import Any

I16_MAX = 32767
I16_MIN = -32768

_TONES = {
    "a": 440.0, "à": 440.0, "á": 440.0, "â": 440.0,
    "b": 466.16,
    "c": 493.88,
    "d": 523.25,
    "e": 554.37, "è": 554.37, "é": 554.37,
    "f": 587.33,
    "g": 622.25,
    "h": 659.25,
    "i": 698.46,
    "j": 739.99,
    "k": 783.99,
    "l": 830.61,
    "m": 880.0,
    "n": 932.33,
    "o": 987.77,
    "p": 1046.5,
    "q": 1108.73,
    "r": 1174.66,
    "s": 1244.51,
    "t": 1318.51,
    "u": 1396.91, "ü": 1396.91,
    "v": 1479.98,
    "w": 1567.98,
    "x": 1661.22,
    "y": 1760.0,
    "z": 1864.66,
}
_DEFAULT_TONE = 392.0


def _f32(value: float) -> float:
    return struct.unpack("f", struct.pack("f", value))[0]


def tone_for_character(ch: str, index: int) -> float:
    """Frequency in Hz for a character at a position in the text."""
    key = ch.lower() if ch.isascii() else ch
    base = _TONES.get(key, _DEFAULT_TONE)
    return base + (index % 5) * 12.0


@dataclass
class SimpleTtsConfig:
    """Settings for the tone synthesiser."""

    model_name: str
    sample_rate: int = 16_000
    character_duration_ms: int = 180
    amplitude: float = 0.35

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SimpleTtsConfig":
        if not isinstance(data, dict) or "model_name" not in data:
            raise ValueError("missing field `model_name`")
        defaults = cls(model_name=data["model_name"])
        return cls(
            model_name=str(data["model_name"]),
            sample_rate=int(data.get("sample_rate", defaults.sample_rate)),
            character_duration_ms=int(
                data.get("character_duration_ms", defaults.character_duration_ms)
            ),
            amplitude=float(data.get("amplitude", defaults.amplitude)),
        )


class SimpleToneTts:
    """Renders each character as a short sine tone; whitespace is silence."""

    def __init__(self, config: SimpleTtsConfig) -> None:
        self.config = config
        self.closed = False

    @property
    def samples_per_character(self) -> int:
        ratio = _f32(_f32(self.config.character_duration_ms) / 1000.0)
        return int(_f32(_f32(self.config.sample_rate) * ratio))

    def synthesize(self, text: str) -> bytes:
        """Return mono 16-bit PCM WAV bytes for the text."""
        rate = self.config.sample_rate
        count = self.samples_per_character
        amplitude = min(max(I16_MAX * self.config.amplitude, 0.0), float(I16_MAX))
        silence = b"\x00\x00" * count

        frames = bytearray()
        for index, ch in enumerate(text):
            if ch.isspace():
                frames += silence
                continue
            frequency = tone_for_character(ch, index)
            samples = (
                max(I16_MIN, min(I16_MAX, int(math.sin(2.0 * math.pi * frequency * (n / rate)) * amplitude)))
                for n in range(count)
            )
            frames += struct.pack(f"<{count}h", *samples)

        buffer = io.BytesIO()
        with wave.open(buffer, "wb") as writer:
            writer.setnchannels(1)
            writer.setsampwidth(2)
            writer.setframerate(rate)
            writer.writeframes(bytes(frames))
        return buffer.getvalue()

    def shutdown(self) -> None:
        """Mark the synthesiser as shut down; it holds no other resources."""
        self.closed = True