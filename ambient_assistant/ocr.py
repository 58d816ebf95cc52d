"""Text extraction from window frames using OpenVINO, plus a light summariser."""

from __future__ import annotations

import logging
import os
import re
import threading
import urllib.request
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol, Sequence

import numpy as np

from .errors import ExtractionError

try:  # pragma: no cover - optional dependency
    import openvino as ov  # type: ignore
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    ov = None  # type: ignore

try:  # pragma: no cover - optional dependency
    from PIL import Image  # type: ignore
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    Image = None  # type: ignore

logger = logging.getLogger(__name__)

_ENV = "AMBIENT_ASSISTANT_OCR_"
_MODEL_ZOO = (
    "https://storage.openvinotoolkit.org/repositories/open_model_zoo/2023.2/models_bin/1/"
    "text-recognition-0014/FP16/text-recognition-0014"
)
_DEFAULT_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ ,.:-_/\\()[]{}@#%&+*=;!?\"'"


class TextExtractor(Protocol):
    """Reads visible text from a captured frame."""

    def extract(self, frame) -> str:
        """Return the text in ``frame``; raise on failure."""


@dataclass(slots=True)
class OcrConfig:
    """Where the recognition network lives and how to decode its output."""

    recognition_model: Path
    device: str = "CPU"
    alphabet: str = _DEFAULT_ALPHABET
    blank_id: int = 0
    download_urls: dict[str, str] = field(
        default_factory=lambda: {"xml": f"{_MODEL_ZOO}.xml", "bin": f"{_MODEL_ZOO}.bin"}
    )

    @classmethod
    def from_env(cls) -> "OcrConfig":
        model_path = os.getenv(f"{_ENV}RECOGNITION_MODEL")
        if model_path:
            recognition_model = Path(model_path).expanduser()
        else:
            root = Path(os.getenv("AMBIENT_ASSISTANT_MODEL_DIR", "models")).expanduser()
            recognition_model = root / "ocr" / "text-recognition-0014.xml"
        config = cls(
            recognition_model=recognition_model,
            device=os.getenv(f"{_ENV}DEVICE", "CPU"),
            alphabet=os.getenv(f"{_ENV}ALPHABET", _DEFAULT_ALPHABET),
            blank_id=int(os.getenv(f"{_ENV}BLANK_ID", "0")),
        )
        config.download_urls["xml"] = os.getenv(f"{_ENV}MODEL_XML_URL", config.download_urls["xml"])
        config.download_urls["bin"] = os.getenv(f"{_ENV}MODEL_BIN_URL", config.download_urls["bin"])
        return config


def ctc_greedy_decode(logits: np.ndarray, alphabet: str, blank_id: int = 0) -> str:
    """Collapse repeated tokens and drop blanks from a CTC output tensor."""

    if logits.ndim == 3:
        token_ids = logits.argmax(axis=2)[0]
    elif logits.ndim == 2:
        token_ids = logits.argmax(axis=1)
    else:
        raise ValueError(f"Unsupported logits shape: {logits.shape}")
    chars: list[str] = []
    previous: Optional[int] = None
    for raw in token_ids:
        idx = int(raw)
        if idx == blank_id:
            previous = None
            continue
        if idx != previous and 0 <= idx < len(alphabet):
            chars.append(alphabet[idx])
        previous = idx
    return "".join(chars)


class OpenVinoTextExtractor:
    """TextExtractor backed by an OpenVINO text-recognition network.

    The network is compiled on first use. If the runtime or the model cannot
    be loaded, OCR is disabled for the life of the extractor and ``extract``
    returns empty text. Inference errors are raised as ``ExtractionError`` so
    the screen sentinel can log them and keep sampling.
    """

    def __init__(self, config: OcrConfig | None = None) -> None:
        self.config = config or OcrConfig.from_env()
        self._lock = threading.Lock()
        self._compiled = None
        self._failed = False
        self._input_shape: Sequence[int] = ()

    @property
    def disabled(self) -> bool:
        return self._failed

    def extract(self, frame) -> str:
        if frame is None:
            return ""
        compiled = self._load()
        if compiled is None:
            return ""
        try:
            prepared = self._prepare_input(frame)
            outputs = compiled({compiled.input(0): prepared})
            logits = outputs[compiled.output(0)]
        except Exception as exc:
            raise ExtractionError(f"OpenVINO inference failed: {exc}") from exc
        return ctc_greedy_decode(np.asarray(logits), self.config.alphabet, self.config.blank_id).strip()

    def _load(self):
        with self._lock:
            if self._compiled is not None or self._failed:
                return self._compiled
            try:
                return self._compile()
            except ExtractionError as exc:
                logger.warning("OpenVINO OCR disabled: %s", exc)
                self._failed = True
                return None

    def _compile(self):
        if ov is None:
            raise ExtractionError("OpenVINO runtime is not installed")
        if Image is None:
            raise ExtractionError("Pillow is required for OCR support")
        model_path = self.config.recognition_model
        try:
            self._ensure_model_files(model_path)
            core = ov.Core()
            compiled = core.compile_model(core.read_model(str(model_path)), self.config.device)
        except Exception as exc:
            raise ExtractionError(f"Unable to load OCR model {model_path}: {exc}") from exc
        shape = list(compiled.input(0).shape)
        if len(shape) != 4:
            raise ExtractionError(f"Unsupported recognition model input shape: {shape}")
        logger.info("Loaded OpenVINO OCR model from %s", model_path)
        self._compiled = compiled
        self._input_shape = shape
        return compiled

    def _prepare_input(self, frame) -> np.ndarray:
        _, channels, height, width = self._input_shape
        image = frame if isinstance(frame, Image.Image) else Image.fromarray(np.asarray(frame))
        image = image.convert("L" if channels == 1 else "RGB").resize((width, height))
        array = np.asarray(image, dtype=np.float32) / 255.0
        if channels == 1:
            array = array[np.newaxis, :, :]
        else:
            array = np.transpose(array, (2, 0, 1))  # HWC -> CHW
        return array[np.newaxis, ...]

    def _ensure_model_files(self, xml_path: Path) -> None:
        bin_path = xml_path.with_suffix(".bin")
        if xml_path.exists() and bin_path.exists():
            return
        xml_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            for suffix, destination in (("xml", xml_path), ("bin", bin_path)):
                if not destination.exists():
                    _download_file(self.config.download_urls[suffix], destination)
        except Exception:
            for leftover in (xml_path, bin_path):
                leftover.unlink(missing_ok=True)
            raise


def _download_file(url: str, destination: Path) -> None:
    logger.info("Downloading OpenVINO OCR model from %s", url)
    with urllib.request.urlopen(url, timeout=30) as response:
        status = getattr(response, "status", 200)
        if status != 200:
            raise RuntimeError(f"Download failed with status {status}: {url}")
        data = response.read()
    if not data:
        raise RuntimeError(f"Downloaded file is empty: {url}")
    if destination.suffix.lower() == ".xml" and not data.lstrip()[:64].startswith(b"<?xml"):
        raise RuntimeError("Downloaded XML does not appear to be valid IR")
    destination.write_bytes(data)


_SENTENCE_BOUNDARY = re.compile(r"(?<=[。．！？.!?])\s+")


def summarize_text(text: str, *, max_sentences: int = 2, max_chars: int = 200) -> str:
    """Produce a lightweight summary from extracted text."""

    cleaned = " ".join(line.strip() for line in text.splitlines() if line.strip())
    if not cleaned:
        return ""
    summary_parts: list[str] = []
    for sentence in _SENTENCE_BOUNDARY.split(cleaned):
        if not sentence:
            continue
        summary_parts.append(sentence)
        if len(summary_parts) >= max_sentences or len(" ".join(summary_parts)) >= max_chars:
            break
    summary = " ".join(summary_parts).strip()
    if len(summary) > max_chars:
        summary = summary[: max_chars - 3].rstrip() + "..."
    return summary
