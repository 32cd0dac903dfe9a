"""Local in-process embedding backend built on sentence-transformers."""

from __future__ import annotations

import gc
import logging
import platform
import sys
from typing import Callable, Literal, Sequence

import numpy as np
from sentence_transformers import SentenceTransformer

from notefinder.embedding.base import ModelInfo, ProviderConfig

logger = logging.getLogger(__name__)

DEFAULT_LOCAL_MAX_TOKENS = 512


def _check_gpu_availability() -> tuple[bool, str | None]:
    """Check if GPU is available and return GPU type.

    Returns:
        (has_gpu, gpu_type) where gpu_type is one of:
        - "cuda" for NVIDIA GPU
        - "rocm" for AMD GPU
        - "mps" for Apple Silicon GPU
        - None if no GPU available
    """
    try:
        import torch

        if torch.cuda.is_available():
            device_name = torch.cuda.get_device_name(0)
            logger.debug("CUDA GPU detected: %s", device_name)
            return (True, "cuda")

        if hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
            logger.debug("Apple MPS GPU detected")
            return (True, "mps")

        if hasattr(torch.version, "hip") and torch.version.hip is not None:
            logger.debug("AMD ROCm GPU detected")
            return (True, "rocm")

        logger.debug("No GPU detected, will use CPU")
        return (False, None)
    except ImportError:
        logger.debug("PyTorch not available for GPU detection")
        return (False, None)
    except Exception as e:
        logger.debug("GPU detection failed: %s", e)
        return (False, None)


def _check_onnx_providers() -> list[str]:
    """Return the available ONNX Runtime execution providers, if any."""
    try:
        import onnxruntime as ort

        return ort.get_available_providers()
    except ImportError:
        return []


def detect_optimal_backend() -> tuple[Literal["torch", "onnx"], str | None, str | None]:
    """Pick the accelerated execution path for this machine.

    Returns:
        (backend_name, onnx_model_file, device). ``device`` is None when the
        backend chooses its own device.
    """
    try:
        has_gpu, gpu_type = _check_gpu_availability()
        onnx_providers = _check_onnx_providers()

        if sys.platform == "darwin" and (
            platform.processor() == "arm" or platform.machine() == "arm64"
        ):
            logger.info("Detected Apple Silicon - using ONNX with ARM64 quantized model + CoreML")
            return ("onnx", "onnx/model_qint8_arm64.onnx", None)

        if gpu_type == "cuda" and "CUDAExecutionProvider" in onnx_providers:
            logger.info("Detected NVIDIA GPU with CUDA - using ONNX with CUDA acceleration")
            return ("onnx", None, "cuda")

        if gpu_type == "rocm" and "ROCMExecutionProvider" in onnx_providers:
            logger.info("Detected AMD GPU with ROCm - using ONNX with ROCm acceleration")
            return ("onnx", None, "cuda")

        if has_gpu and gpu_type in ("cuda", "rocm"):
            logger.info("Detected %s GPU without ONNX provider - using PyTorch on GPU", gpu_type)
            return ("torch", None, "cuda")

        if gpu_type == "mps":
            logger.info("Detected Apple MPS - using PyTorch on MPS")
            return ("torch", None, "mps")

        if onnx_providers:
            logger.info(
                "Detected platform %s - using ONNX backend (providers: %s)",
                sys.platform,
                ", ".join(onnx_providers),
            )
            return ("onnx", None, None)

        logger.info("ONNX not available, using PyTorch backend on %s", sys.platform)
        return ("torch", None, None)

    except Exception as e:
        logger.warning("Failed to detect optimal backend: %s, falling back to PyTorch", e)
        return ("torch", None, None)


class SentenceTransformerBackend:
    """Thin wrapper around `SentenceTransformer` used as an embedding backend.

    The accelerated path uses the auto-detected ONNX/GPU configuration; the
    unaccelerated path is plain PyTorch on CPU.
    """

    name = "local"
    supports_batch = True
    supports_acceleration = True
    exact_tokens = True

    def __init__(self, config: ProviderConfig) -> None:
        self.config = config
        self._model: SentenceTransformer | None = None
        self.backend: str | None = None
        self.device: str | None = None
        self.onnx_model_file: str | None = None

    def load(
        self, model_id: str, *, accelerated: bool, progress: Callable[[float], None]
    ) -> ModelInfo:
        if accelerated:
            self.backend, self.onnx_model_file, detected_device = detect_optimal_backend()
            self.device = self.config.device or detected_device
        else:
            self.backend, self.onnx_model_file, self.device = "torch", None, "cpu"

        progress(0.0)
        self._model = self._load_model(model_id)
        progress(100.0)
        self._log_backend_info()

        dimension = int(self._model.get_sentence_embedding_dimension())
        max_tokens = int(self._model.max_seq_length or DEFAULT_LOCAL_MAX_TOKENS)
        return ModelInfo(vector_size=dimension, max_tokens=max_tokens)

    def _load_model(self, model_id: str) -> SentenceTransformer:
        model_kwargs = {}
        if self.backend == "onnx" and self.onnx_model_file:
            model_kwargs["file_name"] = self.onnx_model_file

        return SentenceTransformer(
            model_id,
            backend=self.backend,
            device=self.device,
            model_kwargs=model_kwargs if model_kwargs else None,
        )

    def _log_backend_info(self) -> None:
        info_parts = [f"Backend: {self.backend}"]

        if self.backend == "onnx":
            providers = _check_onnx_providers()
            if providers:
                info_parts.append(f"ONNX Providers: {', '.join(providers)}")
            if self.onnx_model_file:
                info_parts.append(f"ONNX Model: {self.onnx_model_file}")

        if self.device:
            info_parts.append(f"Device: {self.device}")

        logger.info(" | ".join(info_parts))

    def _require_model(self) -> SentenceTransformer:
        if self._model is None:
            raise RuntimeError("Local model not loaded")
        return self._model

    def unload(self) -> None:
        self._model = None
        gc.collect()

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        """Return float32 embeddings for input texts."""
        embeddings = self._require_model().encode(
            list(texts),
            batch_size=self.config.batch_size,
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=self.config.normalize,
        )
        return embeddings.astype("float32", copy=False)

    def count_tokens(self, text: str) -> int:
        tokenizer = self._require_model().tokenizer
        return len(tokenizer.encode(text, add_special_tokens=True))

    def truncate(self, text: str, max_tokens: int) -> str:
        tokenizer = self._require_model().tokenizer
        # Leave room for the special tokens added at encode time.
        ids = tokenizer.encode(text, add_special_tokens=False)[: max(max_tokens - 2, 1)]
        return tokenizer.decode(ids)

    def close(self) -> None:
        self.unload()
