"""Local embedding model management."""

from __future__ import annotations

import asyncio
import logging
import platform
import sys
from dataclasses import dataclass
from typing import Literal, Sequence

import numpy as np
from sentence_transformers import SentenceTransformer

from nephrorag.embedding.base import ProviderInfo
from nephrorag.errors import ConfigurationError, EmbeddingProviderError, EmbeddingTimeoutError

DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

# Output sizes of models we know, so describe() works before the model loads.
KNOWN_DIMENSIONS: dict[str, int] = {
    "sentence-transformers/all-MiniLM-L6-v2": 384,
    "sentence-transformers/all-MiniLM-L12-v2": 384,
    "sentence-transformers/all-mpnet-base-v2": 768,
    "BAAI/bge-small-en-v1.5": 384,
    "BAAI/bge-base-en-v1.5": 768,
}

logger = logging.getLogger(__name__)


def _check_gpu_availability() -> tuple[bool, str | None]:
    """Check if GPU is available and return GPU type.

    Returns:
        (has_gpu, gpu_type) where gpu_type is "cuda", "rocm", "mps" or None.
    """
    try:
        import torch

        if torch.cuda.is_available():
            logger.debug(f"CUDA GPU detected: {torch.cuda.get_device_name(0)}")
            return (True, "cuda")

        if hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
            logger.debug("Apple MPS GPU detected")
            return (True, "mps")

        if hasattr(torch.version, "hip") and torch.version.hip is not None:
            logger.debug("AMD ROCm GPU detected")
            return (True, "rocm")

        return (False, None)
    except ImportError:
        logger.debug("PyTorch not available for GPU detection")
        return (False, None)
    except Exception as e:
        logger.debug(f"GPU detection failed: {e}")
        return (False, None)


def _check_onnx_providers() -> list[str]:
    """Return the ONNX Runtime execution providers installed, if any."""
    try:
        import onnxruntime as ort

        return ort.get_available_providers()
    except ImportError:
        return []


def detect_optimal_backend() -> tuple[Literal["torch", "onnx"], str | None]:
    """Pick the inference backend for the local model.

    Returns:
        (backend_name, onnx_model_file). The quantized ONNX export is used
        wherever ONNX Runtime is present; PyTorch is the fallback.
    """
    try:
        _, gpu_type = _check_gpu_availability()
        onnx_providers = _check_onnx_providers()

        if sys.platform == "darwin" and (
            platform.processor() == "arm" or platform.machine() == "arm64"
        ):
            logger.info("Detected Apple Silicon - using ONNX with ARM64 quantized model")
            return ("onnx", "onnx/model_qint8_arm64.onnx")

        if gpu_type == "cuda" and "CUDAExecutionProvider" in onnx_providers:
            logger.info("Detected NVIDIA GPU with CUDA - using ONNX with CUDA acceleration")
            return ("onnx", None)

        if onnx_providers:
            logger.info(
                f"Detected platform {sys.platform} - using ONNX quantized model "
                f"(providers: {', '.join(onnx_providers)})"
            )
            return ("onnx", "onnx/model_quint8_avx2.onnx")

        logger.info(f"ONNX not available, using PyTorch backend on {sys.platform}")
        return ("torch", None)

    except Exception as e:
        logger.warning(f"Failed to detect optimal backend: {e}, falling back to PyTorch")
        return ("torch", None)


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_MODEL
    dimensions: int | None = None
    batch_size: int = 16
    normalize: bool = True
    backend: Literal["torch", "onnx", "openvino"] | None = None
    onnx_model_file: str | None = None
    device: str | None = None
    load_timeout: float = 300.0
    timeout: float = 30.0


class LocalEmbeddingProvider:
    """In-process `SentenceTransformer` producing mean-pooled, L2-normalized vectors.

    The model is loaded lazily on the first embedding call, in a worker
    thread. Concurrent first calls share one in-flight load; if the load
    fails the next call starts a fresh one.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()
        dimensions = self.config.dimensions or KNOWN_DIMENSIONS.get(self.config.model_name)
        if dimensions is None:
            raise ConfigurationError(
                f"Unknown output dimension for local model '{self.config.model_name}'; "
                "set EmbeddingConfig.dimensions"
            )
        self.dimension = dimensions
        self._model: SentenceTransformer | None = None
        self._load_task: asyncio.Task[SentenceTransformer] | None = None

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    def describe(self) -> ProviderInfo:
        return ProviderInfo(name=self.config.model_name, dimensions=self.dimension)

    def _load_model(self) -> SentenceTransformer:
        """Load the SentenceTransformer model with appropriate backend settings."""
        model_kwargs = {}
        if self.config.backend == "onnx" and self.config.onnx_model_file:
            model_kwargs["file_name"] = self.config.onnx_model_file

        return SentenceTransformer(
            self.config.model_name,
            backend=self.config.backend,
            device=self.config.device,
            model_kwargs=model_kwargs if model_kwargs else None,
        )

    def _load_with_fallback(self) -> SentenceTransformer:
        if self.config.backend is None:
            self.config.backend, self.config.onnx_model_file = detect_optimal_backend()

        logger.info(f"Initializing local embedding model {self.config.model_name}...")
        try:
            model = self._load_model()
        except Exception as e:
            if self.config.backend == "torch":
                raise
            logger.warning(
                f"Failed to load model with backend '{self.config.backend}': {e}. "
                "Falling back to PyTorch."
            )
            self.config.backend = "torch"
            self.config.onnx_model_file = None
            model = self._load_model()

        loaded_dimension = int(model.get_sentence_embedding_dimension())
        if loaded_dimension != self.dimension:
            raise ConfigurationError(
                f"Model {self.config.model_name} produces {loaded_dimension} dimensions, "
                f"expected {self.dimension}"
            )
        logger.info(
            f"Local embedding model loaded | Backend: {self.config.backend} | "
            f"Dimensions: {self.dimension}"
        )
        return model

    def _on_load_done(self, task: asyncio.Task[SentenceTransformer]) -> None:
        if task.cancelled() or task.exception() is not None:
            if self._load_task is task:
                self._load_task = None
            return
        self._model = task.result()

    async def _ensure_model(self) -> SentenceTransformer:
        if self._model is not None:
            return self._model

        if self._load_task is None:
            self._load_task = asyncio.ensure_future(asyncio.to_thread(self._load_with_fallback))
            self._load_task.add_done_callback(self._on_load_done)
        task = self._load_task

        try:
            model = await asyncio.wait_for(asyncio.shield(task), timeout=self.config.load_timeout)
        except asyncio.TimeoutError as exc:
            raise EmbeddingTimeoutError(
                f"Model load exceeded {self.config.load_timeout}s",
                provider_name=self.config.model_name,
            ) from exc
        except ConfigurationError:
            raise
        except Exception as exc:
            logger.error(f"Failed to initialize local embedding model: {exc}")
            raise EmbeddingProviderError(
                f"Failed to load local model: {exc}", provider_name=self.config.model_name
            ) from exc

        self._model = model
        return model

    def _encode(self, model: SentenceTransformer, sentences: list[str]) -> np.ndarray:
        embeddings = model.encode(
            sentences,
            batch_size=self.config.batch_size,
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=self.config.normalize,
        )
        return np.asarray(embeddings, dtype="float32")

    async def embed_batch(self, texts: Sequence[str]) -> np.ndarray:
        """Return float32 embeddings for input texts."""
        sentences = list(texts)
        if not sentences:
            return np.zeros((0, self.dimension), dtype="float32")

        model = await self._ensure_model()
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._encode, model, sentences), timeout=self.config.timeout
            )
        except asyncio.TimeoutError as exc:
            raise EmbeddingTimeoutError(
                f"Local embedding exceeded {self.config.timeout}s",
                provider_name=self.config.model_name,
            ) from exc
        except Exception as exc:
            raise EmbeddingProviderError(
                f"Local embedding failed: {exc}", provider_name=self.config.model_name
            ) from exc

    async def embed(self, text: str) -> np.ndarray:
        """Convenience wrapper for single-text embedding."""
        return (await self.embed_batch([text]))[0]
