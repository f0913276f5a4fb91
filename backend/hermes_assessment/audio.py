"""
Audio Synthesis Pipeline

Turns a listening dialogue into a speech-synthesis request, decodes the raw
PCM16 reply into normalized float samples and caches synthesized audio per
dialogue. Also holds the per-session audio resources (one playback buffer and
at most one capture stream).
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import struct
import uuid
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel

from .errors import AudioSynthesisError, CaptureInUseError, SessionStateError
from .providers import AudioProvider
from .schemas import DialogueLine
from .settings import settings

logger = logging.getLogger(__name__)


class PlaybackBuffer(BaseModel):
    sample_rate: int
    channels: int
    # One list of floats in [-1, 1] per channel
    samples: List[List[float]]

    @property
    def frame_count(self) -> int:
        return len(self.samples[0]) if self.samples else 0

    @property
    def duration_seconds(self) -> float:
        return self.frame_count / self.sample_rate if self.sample_rate else 0.0


def build_transcript(lines: Sequence[DialogueLine]) -> str:
    return "\n".join(f"{line.speaker}: {line.line}" for line in lines)


def _distinct_speakers(lines: Sequence[DialogueLine]) -> List[str]:
    seen: List[str] = []
    for line in lines:
        if line.speaker not in seen:
            seen.append(line.speaker)
    return seen


def build_speech_config(
    lines: Sequence[DialogueLine],
    speaker_voice_map: Dict[str, str],
    default_voice: str,
) -> Dict[str, Any]:
    """
    Build the provider-neutral speech config for a dialogue.

    Several speakers give a multi-speaker config; speakers without a mapped
    voice are dropped and logged. A single speaker, or a multi-speaker
    dialogue where nobody is mapped, uses one voice.

    Raises:
        AudioSynthesisError: If the dialogue has no speakers
    """
    speakers = _distinct_speakers(lines)
    if not speakers:
        raise AudioSynthesisError("Dialogue has no speakers to synthesize")

    if len(speakers) == 1:
        return {"voiceName": speaker_voice_map.get(speakers[0]) or default_voice}

    configs: List[Dict[str, str]] = []
    for speaker in speakers:
        voice = speaker_voice_map.get(speaker)
        if not voice:
            logger.warning("Speaker %r has no mapped voice; dropped from multi-speaker config", speaker)
            continue
        configs.append({"speakerName": speaker, "voiceName": voice})
    if not configs:
        logger.warning("No dialogue speaker has a mapped voice; using default voice %r", default_voice)
        return {"voiceName": default_voice}
    return {"multiSpeakerVoiceConfigs": configs}


def decode_to_playback_buffer(raw: bytes, sample_rate: int, channels: int) -> PlaybackBuffer:
    """
    Decode little-endian PCM16 into per-channel floats in [-1, 1].

    Raises:
        AudioSynthesisError: If the byte length does not form whole frames
    """
    if channels < 1:
        raise AudioSynthesisError(f"Invalid channel count: {channels}")
    if len(raw) % 2:
        raise AudioSynthesisError("PCM16 payload has an odd number of bytes")
    count = len(raw) // 2
    if count % channels:
        raise AudioSynthesisError(f"PCM16 sample count {count} is not divisible by {channels} channels")
    ints = struct.unpack(f"<{count}h", raw)
    samples = [[ints[i] / 32768.0 for i in range(ch, count, channels)] for ch in range(channels)]
    return PlaybackBuffer(sample_rate=sample_rate, channels=channels, samples=samples)


class DialogueAudioPipeline:
    """Synthesizes dialogue audio through the audio provider, caching by dialogue content."""

    def __init__(
        self,
        provider: AudioProvider,
        *,
        default_voice: Optional[str] = None,
        sample_rate: Optional[int] = None,
        channels: Optional[int] = None,
    ) -> None:
        self.provider = provider
        self.default_voice = default_voice or settings.default_voice_name
        self.sample_rate = sample_rate or settings.audio_sample_rate
        self.channels = channels or settings.audio_channels
        self._cache: Dict[str, bytes] = {}
        self._cache_lock: asyncio.Lock = asyncio.Lock()

    @staticmethod
    def cache_key(lines: Sequence[DialogueLine]) -> str:
        return json.dumps([[line.speaker, line.line] for line in lines], ensure_ascii=False)

    async def synthesize_dialogue(self, lines: Sequence[DialogueLine], speaker_voice_map: Dict[str, str]) -> bytes:
        """
        Return raw PCM16 bytes for the dialogue, calling the provider only on a cache miss.

        Raises:
            AudioSynthesisError: If the provider fails or returns no decodable audio
        """
        key = self.cache_key(lines)
        async with self._cache_lock:
            cached = self._cache.get(key)
            if cached is not None:
                logger.debug("Dialogue audio cache hit (%d bytes)", len(cached))
                return cached

            transcript = build_transcript(lines)
            speech_config = build_speech_config(lines, speaker_voice_map, self.default_voice)
            try:
                encoded = await self.provider.synthesize_speech(transcript, speech_config)
            except Exception as exc:
                raise AudioSynthesisError(f"Speech synthesis failed: {exc}") from exc
            if not encoded:
                raise AudioSynthesisError("Speech synthesis returned no audio")
            try:
                raw = base64.b64decode(encoded, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise AudioSynthesisError(f"Speech synthesis returned invalid base64: {exc}") from exc
            if not raw:
                raise AudioSynthesisError("Speech synthesis returned empty audio")
            self._cache[key] = raw
            return raw

    def decode(self, raw: bytes) -> PlaybackBuffer:
        return decode_to_playback_buffer(raw, self.sample_rate, self.channels)


# ============================================================================
# SESSION AUDIO RESOURCES
# ============================================================================

class CaptureStream:
    def __init__(self, mime_type: str) -> None:
        self.capture_id: str = uuid.uuid4().hex
        self.mime_type = mime_type
        self._chunks: List[bytes] = []

    def append(self, chunk: bytes) -> None:
        self._chunks.append(chunk)

    @property
    def size(self) -> int:
        return sum(len(c) for c in self._chunks)

    def data(self) -> bytes:
        return b"".join(self._chunks)


class CapturedAudio(BaseModel):
    data_base64: str
    media_type: str
    size_bytes: int


class AudioResources:
    """The playback buffer and capture stream one session may hold at a time."""

    def __init__(self) -> None:
        self.playback: Optional[PlaybackBuffer] = None
        self.capture: Optional[CaptureStream] = None

    def load_playback(self, buffer: PlaybackBuffer) -> None:
        self.playback = buffer

    def start_capture(self, mime_type: Optional[str] = None) -> CaptureStream:
        if self.capture is not None:
            raise CaptureInUseError("A recording is already in progress for this session")
        self.capture = CaptureStream(mime_type or settings.recording_mime_type)
        return self.capture

    def append_capture(self, chunk: bytes) -> int:
        if self.capture is None:
            raise SessionStateError("No recording in progress")
        self.capture.append(chunk)
        return self.capture.size

    def stop_capture(self) -> Optional[CapturedAudio]:
        stream, self.capture = self.capture, None
        if stream is None:
            return None
        raw = stream.data()
        return CapturedAudio(
            data_base64=base64.b64encode(raw).decode("ascii"),
            media_type=stream.mime_type,
            size_bytes=len(raw),
        )

    def release(self) -> None:
        if self.playback is not None or self.capture is not None:
            logger.debug("Releasing session audio resources")
        self.playback = None
        self.capture = None
