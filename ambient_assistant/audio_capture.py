"""Audio input plumbing: level metering, sources and the transcriber seam."""

from __future__ import annotations

import logging
import queue
from dataclasses import dataclass
from typing import Optional, Protocol

import numpy as np

logger = logging.getLogger(__name__)

try:  # pragma: no cover - optional dependency
    import sounddevice as sd  # type: ignore
except (ModuleNotFoundError, OSError):  # pragma: no cover - PortAudio may be missing
    sd = None  # type: ignore


@dataclass(slots=True)
class AudioChunk:
    samples: np.ndarray
    source_name: str = "microphone"


class Transcriber(Protocol):
    def transcribe(self, audio_chunk: np.ndarray) -> str:
        """Return the text spoken in ``audio_chunk``; raise on failure."""


class AudioSource(Protocol):
    def open(self) -> None: ...

    def read(self, timeout: float) -> Optional[AudioChunk]:
        """Return the next chunk, or ``None`` if nothing arrived in time."""

    def close(self) -> None: ...


def rms_level(samples: np.ndarray) -> float:
    """Root-mean-square level normalised to [0, 1].

    Integer PCM is scaled by its dtype range; float input is assumed to be in
    [-1, 1] already.
    """

    data = np.asarray(samples)
    if data.size == 0:
        return 0.0
    if np.issubdtype(data.dtype, np.integer):
        scale = float(np.iinfo(data.dtype).max)
        data = data.astype(np.float32) / scale
    else:
        data = data.astype(np.float32)
    level = float(np.sqrt(np.mean(np.square(data))))
    return min(level, 1.0)


class MicrophoneSource:
    """Default input device captured through sounddevice's callback stream."""

    def __init__(
        self,
        *,
        source_name: str = "microphone",
        sample_rate: int = 16_000,
        block_ms: int = 100,
        device: int | str | None = None,
        max_pending: int = 256,
    ) -> None:
        self.source_name = source_name
        self.sample_rate = sample_rate
        self.blocksize = int(sample_rate * block_ms / 1000)
        self.device = device
        self._queue: "queue.Queue[np.ndarray]" = queue.Queue(maxsize=max_pending)
        self._stream = None

    @staticmethod
    def is_available() -> bool:
        return sd is not None

    def open(self) -> None:
        if sd is None:
            raise RuntimeError("sounddevice (PortAudio) is not available")
        if self._stream is not None:
            return
        self._stream = sd.InputStream(
            samplerate=self.sample_rate,
            blocksize=self.blocksize,
            channels=1,
            dtype="float32",
            device=self.device,
            callback=self._on_block,
        )
        self._stream.start()
        logger.info("Microphone capture started (%s Hz)", self.sample_rate)

    def _on_block(self, indata, frames, time_info, status) -> None:  # pragma: no cover - device callback
        if status:
            logger.debug("Audio stream status: %s", status)
        try:
            self._queue.put_nowait(indata[:, 0].copy())
        except queue.Full:
            logger.debug("Dropping audio block; consumer is behind")

    def read(self, timeout: float) -> Optional[AudioChunk]:
        try:
            samples = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        return AudioChunk(samples=samples, source_name=self.source_name)

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop()
            stream.close()
            logger.info("Microphone capture stopped")
