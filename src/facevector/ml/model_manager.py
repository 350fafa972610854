"""Model manager: locate, download, load and cache ONNX models.

Models are looked up in ``models_dir`` first and fetched from HuggingFace
only when the registry names a repository. Sessions are created once and
shared read-only between requests.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from facevector.errors import ModelNotFoundError
from facevector.ml.anchors import CFG_MNET, CFG_RE50, DetectorConfig

if TYPE_CHECKING:
    from facevector.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """Protocol for model lifecycle management."""

    def ensure_downloaded(self, model_name: str) -> Path:
        """Ensure a model file is available locally and return its path."""
        ...

    def get_session(self, model_name: str) -> InferenceSession:
        """Return a cached or newly created InferenceSession."""
        ...

    def get_loaded_models(self) -> list[str]:
        """Return names of currently loaded models."""
        ...

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        ...


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


class ModelTask(StrEnum):
    FACE_DETECTION = "face_detection"
    FACE_RECOGNITION = "face_recognition"


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single ONNX model.

    ``repo_id`` is None for models that must be provisioned into
    ``models_dir`` by the operator.
    """

    name: str
    repo_id: str | None
    filename: str
    subfolder: str | None
    task: ModelTask
    license: str
    insightface: bool
    detector_config: DetectorConfig | None = None


MODEL_REGISTRY: dict[str, ModelSpec] = {
    "retinaface_resnet50": ModelSpec(
        name="retinaface_resnet50",
        repo_id=None,
        filename="retinaface_resnet50.onnx",
        subfolder=None,
        task=ModelTask.FACE_DETECTION,
        license="MIT",
        insightface=False,
        detector_config=CFG_RE50,
    ),
    "retinaface_mnet025": ModelSpec(
        name="retinaface_mnet025",
        repo_id=None,
        filename="retinaface_mnet025.onnx",
        subfolder=None,
        task=ModelTask.FACE_DETECTION,
        license="MIT",
        insightface=False,
        detector_config=CFG_MNET,
    ),
    "arcface": ModelSpec(
        name="arcface",
        repo_id=None,
        filename="arcface.onnx",
        subfolder=None,
        task=ModelTask.FACE_RECOGNITION,
        license="Apache-2.0",
        insightface=False,
    ),
    "w600k_r50": ModelSpec(
        name="w600k_r50",
        repo_id="public-data/insightface",
        filename="w600k_r50.onnx",
        subfolder="models/buffalo_l",
        task=ModelTask.FACE_RECOGNITION,
        license="Non-commercial (InsightFace)",
        insightface=True,
    ),
}


def get_model_spec(model_name: str) -> ModelSpec:
    try:
        return MODEL_REGISTRY[model_name]
    except KeyError:
        raise ModelNotFoundError(f"Unknown model: {model_name}") from None


def get_detector_config(model_name: str) -> DetectorConfig:
    """Return the anchor/decode configuration of a detection model."""
    spec = get_model_spec(model_name)
    if spec.detector_config is None:
        raise ValueError(f"Model '{model_name}' is not a face detection model")
    return spec.detector_config


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class OnnxModelManager:
    """Locates, loads and caches ONNX inference sessions for the process lifetime."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._models_dir.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._sessions: dict[str, InferenceSession] = {}
        self._model_paths: dict[str, Path] = {}

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    def ensure_downloaded(self, model_name: str) -> Path:
        """Return the local model path, downloading from HuggingFace if needed."""
        spec = get_model_spec(model_name)
        self._check_license(spec)

        if model_name in self._model_paths:
            path = self._model_paths[model_name]
            if path.exists():
                return path

        local = self._local_path(spec)
        if local.exists():
            self._model_paths[model_name] = local
            return local

        if spec.repo_id is None:
            raise FileNotFoundError(f"Model '{model_name}' not found at {local} and has no download source")

        downloaded = Path(
            hf_hub_download(
                repo_id=spec.repo_id,
                filename=spec.filename,
                subfolder=spec.subfolder,
                local_dir=str(self._models_dir),
            )
        )
        self._model_paths[model_name] = downloaded
        logger.info("Downloaded %s to %s", model_name, downloaded)
        return downloaded

    def get_session(self, model_name: str) -> InferenceSession:
        """Return a cached InferenceSession, creating one if needed."""
        with self._lock:
            cached = self._sessions.get(model_name)
            if cached is not None:
                return cached

        model_path = self.ensure_downloaded(model_name)
        session = InferenceSession(
            str(model_path),
            sess_options=self._session_options,
            providers=self._providers,
        )

        with self._lock:
            # Double-check: another thread may have created it while we loaded.
            existing = self._sessions.get(model_name)
            if existing is not None:
                return existing
            self._sessions[model_name] = session
            logger.info("Loaded session for %s", model_name)
            return session

    def get_loaded_models(self) -> list[str]:
        """Return names of models with active sessions."""
        with self._lock:
            return list(self._sessions.keys())

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        with self._lock:
            self._sessions.clear()
            logger.info("All model sessions cleared")

    # -- Internal -----------------------------------------------------------

    def _local_path(self, spec: ModelSpec) -> Path:
        if spec.subfolder:
            return self._models_dir / spec.subfolder / spec.filename
        return self._models_dir / spec.filename

    def _check_license(self, spec: ModelSpec) -> None:
        if spec.insightface and not self._settings.accept_insightface_license:
            raise RuntimeError(f"Model '{spec.name}' requires FACEVECTOR_ACCEPT_INSIGHTFACE_LICENSE=true")

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
