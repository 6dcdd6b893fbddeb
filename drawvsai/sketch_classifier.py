"""
Sketch Classifier Module - Doodle Category Inference
====================================================
Wraps the sketch classification model behind a small interface:
given a (1, S, S, 1) intensity tensor, return one probability per category.

Backends:
- ONNX Runtime for an exported doodle classifier (local file or fetched
  from the Hugging Face Hub)
- A deterministic mock for running the game without a model
"""

import json
import logging
import os
from enum import Enum, auto
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from .errors import ModelLoadError


logger = logging.getLogger(__name__)


# Used when no labels file is available; index-aligned with the bundled model
DEFAULT_CATEGORIES: Tuple[str, ...] = (
    "apple", "banana", "bicycle", "butterfly", "cactus", "cake",
    "camera", "car", "chair", "cloud", "crab", "crown", "donut",
    "door", "eye", "flower", "house", "ice cream", "key",
    "lightning", "mountain", "pizza", "star",
)


class ClassifierBackend(Enum):
    """Available sketch classification backends."""
    ONNX = auto()
    MOCK = auto()


def load_labels(path: Optional[Union[str, Path]]) -> Tuple[str, ...]:
    """
    Load the category list from a JSON array of strings.

    Falls back to DEFAULT_CATEGORIES if the file is missing or invalid.
    """
    if path is None:
        return DEFAULT_CATEGORIES

    try:
        with open(path, "r", encoding="utf-8") as f:
            labels = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Could not load labels from %s (%s); using built-in categories", path, e)
        return DEFAULT_CATEGORIES

    if not isinstance(labels, list) or not labels or not all(isinstance(l, str) for l in labels):
        logger.warning("Labels file %s is not a list of strings; using built-in categories", path)
        return DEFAULT_CATEGORIES

    logger.info("Loaded %d categories from %s", len(labels), path)
    return tuple(labels)


def softmax(values: np.ndarray) -> np.ndarray:
    shifted = values - np.max(values)
    exp = np.exp(shifted)
    return exp / exp.sum()


class SketchClassifier:
    """
    Base class for sketch classifiers.

    Subclasses implement ``_infer`` and return raw scores for one sample.
    """

    backend = ClassifierBackend.MOCK

    def __init__(self, categories: Sequence[str] = DEFAULT_CATEGORIES):
        self.categories: Tuple[str, ...] = tuple(categories)

    @property
    def num_classes(self) -> int:
        return len(self.categories)

    def predict(self, tensor: np.ndarray) -> np.ndarray:
        """
        Classify one preprocessed sketch.

        Args:
            tensor: (1, S, S, 1) float32 input

        Returns:
            Probability vector aligned with ``categories``
        """
        scores = np.asarray(self._infer(tensor), dtype=np.float32).reshape(-1)
        if scores.shape[0] != self.num_classes:
            raise ValueError(
                f"Model returned {scores.shape[0]} scores for {self.num_classes} categories"
            )
        # Some exports end with logits instead of a softmax layer
        if np.any(scores < 0) or not np.isclose(scores.sum(), 1.0, atol=1e-3):
            scores = softmax(scores)
        return scores

    def _infer(self, tensor: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def warmup(self, input_size: int = 28):
        """
        Run one blank inference so the first real tick is not slow.

        Raises:
            ModelLoadError: If the model output does not match the categories
        """
        try:
            self.predict(np.zeros((1, input_size, input_size, 1), dtype=np.float32))
        except ValueError as e:
            raise ModelLoadError(f"Sketch model does not fit the category list: {e}") from e

    def close(self):
        """Release backend resources."""


class OnnxSketchClassifier(SketchClassifier):
    """Sketch classifier backed by an ONNX Runtime inference session."""

    backend = ClassifierBackend.ONNX

    def __init__(
        self,
        model_path: Union[str, Path],
        categories: Sequence[str] = DEFAULT_CATEGORIES,
        use_cuda: bool = False
    ):
        super().__init__(categories)
        self.model_path = Path(model_path)
        self.session = self._load_session(use_cuda)
        self.input_name = self.session.get_inputs()[0].name
        self._input_shape = self.session.get_inputs()[0].shape
        self._check_output_size()

    def _load_session(self, use_cuda: bool):
        if not self.model_path.exists():
            raise ModelLoadError(f"Sketch model not found: {self.model_path}")

        try:
            import onnxruntime as ort

            providers = ["CPUExecutionProvider"]
            if use_cuda:
                providers = ["CUDAExecutionProvider", "CPUExecutionProvider"]

            session = ort.InferenceSession(str(self.model_path), providers=providers)
        except Exception as e:
            raise ModelLoadError(f"Failed to load sketch model {self.model_path}: {e}") from e

        logger.info("Loaded sketch model %s", self.model_path)
        return session

    def _check_output_size(self):
        # Dynamic dimensions come back as strings or None; those are checked by warmup
        output_shape = self.session.get_outputs()[0].shape
        classes = output_shape[-1] if output_shape else None
        if isinstance(classes, int) and classes != self.num_classes:
            raise ModelLoadError(
                f"Sketch model {self.model_path} has {classes} outputs "
                f"but {self.num_classes} categories are loaded"
            )

    def _infer(self, tensor: np.ndarray) -> np.ndarray:
        x = tensor.astype(np.float32)
        # Channels-first exports expect (1, 1, S, S)
        if len(self._input_shape) == 4 and self._input_shape[1] == 1:
            x = x.transpose(0, 3, 1, 2)
        outputs = self.session.run(None, {self.input_name: x})
        return outputs[0]


class MockSketchClassifier(SketchClassifier):
    """
    Deterministic stand-in for a real model.

    Derives scores from coarse shape statistics of the input, so that the
    guess reacts to drawing without any model file.
    """

    def __init__(self, categories: Sequence[str] = DEFAULT_CATEGORIES):
        super().__init__(categories)
        self._projection = np.random.default_rng(0).normal(
            size=(self.num_classes, 4)
        ).astype(np.float32)

    def _infer(self, tensor: np.ndarray) -> np.ndarray:
        img = tensor.reshape(tensor.shape[1], tensor.shape[2])
        total = float(img.sum())
        if total <= 0:
            return np.full(self.num_classes, 1.0 / self.num_classes, dtype=np.float32)

        h, w = img.shape
        ys, xs = np.mgrid[0:h, 0:w]
        features = np.array([
            total / img.size,
            float((img * xs).sum() / total) / w,
            float((img * ys).sum() / total) / h,
            float(np.count_nonzero(img)) / img.size,
        ], dtype=np.float32)
        return softmax(self._projection @ features * 8.0)


def fetch_model(repo_id: str, filename: str = "model.onnx") -> Tuple[Path, Optional[Path]]:
    """
    Download a model (and its labels.json, if present) from the Hugging Face Hub.

    Returns:
        (model_path, labels_path or None)
    """
    try:
        from huggingface_hub import hf_hub_download
        from huggingface_hub.utils import EntryNotFoundError

        token = os.environ.get('HF_TOKEN') or None
        logger.info("Fetching %s from %s", filename, repo_id)
        model_path = Path(hf_hub_download(repo_id=repo_id, filename=filename, token=token))
    except Exception as e:
        raise ModelLoadError(f"Failed to fetch {filename} from {repo_id}: {e}") from e

    # Labels are optional; without them the built-in categories are used
    try:
        labels_path = Path(hf_hub_download(repo_id=repo_id, filename="labels.json", token=token))
    except EntryNotFoundError:
        logger.debug("No labels.json in %s", repo_id)
        labels_path = None
    except Exception as e:
        logger.warning("Could not fetch labels.json from %s (%s)", repo_id, e)
        labels_path = None

    return model_path, labels_path


def create_classifier(
    model_path: Optional[Union[str, Path]] = None,
    labels_path: Optional[Union[str, Path]] = None,
    hub_repo: Optional[str] = None,
    hub_filename: str = "model.onnx",
    use_mock: bool = False
) -> SketchClassifier:
    """
    Factory function to create a sketch classifier.

    Args:
        model_path: Local ONNX model file
        labels_path: JSON list of category names
        hub_repo: Hugging Face Hub repo to fetch the model from
        hub_filename: Model file name inside the repo
        use_mock: Use the mock classifier

    Returns:
        Ready-to-use classifier

    Raises:
        ModelLoadError: If a real model was requested but cannot be loaded
    """
    if not use_mock and model_path is None and hub_repo:
        model_path, hub_labels = fetch_model(hub_repo, hub_filename)
        labels_path = labels_path or hub_labels

    categories = load_labels(labels_path)

    if use_mock or model_path is None:
        logger.info("No sketch model configured. Using mock classifier.")
        classifier = MockSketchClassifier(categories)
    else:
        classifier = OnnxSketchClassifier(model_path, categories)

    logger.info(
        "Sketch classifier ready: %s backend, %d categories",
        classifier.backend.name, classifier.num_classes
    )
    return classifier
