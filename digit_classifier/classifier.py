"""Classifies handwritten digits with a TensorFlow Lite model

    Typical Usage Example:

    >>> classifier = DigitClassifier()
    >>> classifier.initialize(Path("model.tflite"))
    >>> classifier.classify(image)
    'Prediction Result: 7\\nConfidence: 0.98'
    >>> future = classifier.classify_async(image)
    >>> classifier.close()
"""

import logging
import mmap
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from enum import Enum
from pathlib import Path
from typing import Any, Callable, List, Optional

import numpy
from PIL import Image

from digit_classifier.exceptions import ClassificationError

logger = logging.getLogger(__name__)

# FlatBuffer file identifier of TensorFlow Lite models, stored after the root offset
TFLITE_IDENTIFIER = b"TFL3"
NUM_CLASSES = 10

InterpreterFactory = Callable[[bytes], Any]


class ModelHandle:
    """A read-only memory map of a model file.

    Should be used as a context manager or closed explicitly.
    """

    def __init__(self, path: Path, buffer: mmap.mmap):
        self.path = path
        self._buffer: Optional[mmap.mmap] = buffer

    @classmethod
    def open(cls, path: Path) -> "ModelHandle":
        """Maps a model file into memory

        :raises ValueError: if the file is empty or not a TensorFlow Lite model
        :raises OSError: if the file cannot be opened
        """
        path = Path(path)
        with path.open("rb") as fp:
            if path.stat().st_size == 0:
                raise ValueError(f"model file {path} is empty")
            buffer = mmap.mmap(fp.fileno(), 0, access=mmap.ACCESS_READ)

        if buffer[4:8] != TFLITE_IDENTIFIER:
            buffer.close()
            raise ValueError(f"{path} is not a TensorFlow Lite model")

        return cls(path, buffer)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self):
        return f"<ModelHandle path={self.path} closed={self.closed}>"

    @property
    def closed(self) -> bool:
        return self._buffer is None

    @property
    def buffer(self) -> mmap.mmap:
        if self._buffer is None:
            raise ValueError("model handle is closed")
        return self._buffer

    @property
    def size(self) -> int:
        return len(self.buffer)

    def read(self) -> bytes:
        """Returns the full model contents"""
        return self.buffer[:]

    def close(self):
        if self._buffer is not None:
            self._buffer.close()
            self._buffer = None


class Prediction:
    """The result of classifying one image."""

    def __init__(self, digit: int, probabilities: List[float]):
        self.digit = digit
        self.probabilities = probabilities

    def __repr__(self):
        return f"<Prediction digit={self.digit} confidence={self.confidence:.2f}>"

    @property
    def confidence(self) -> float:
        return self.probabilities[self.digit]

    @property
    def text(self) -> str:
        return f"Prediction Result: {self.digit}\nConfidence: {self.confidence:.2f}"


class ClassifierState(Enum):
    UNINITIALIZED = 0
    READY = 1
    CLOSED = 2


def _load_interpreter(model_content: bytes):
    """Creates a TensorFlow Lite interpreter for a model"""
    import tensorflow
    interpreter = tensorflow.lite.Interpreter(model_content=model_content)
    interpreter.allocate_tensors()
    return interpreter


class DigitClassifier:
    """Wraps a TensorFlow Lite interpreter that recognises a single digit.

    Classification only works between ``initialize`` and ``close``.
    Asynchronous calls run on a single background worker and never raise,
    errors are delivered through the returned future.

    :param Executor executor: runs asynchronous classifications, one worker is created if omitted
    :param interpreter_factory: builds an interpreter from the model bytes
    """

    def __init__(self, executor: Optional[Executor] = None,
                 interpreter_factory: Optional[InterpreterFactory] = None):
        self._owns_executor = executor is None
        self._executor = executor if executor is not None else ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="classifier")
        self._interpreter_factory = interpreter_factory or _load_interpreter

        self._lock = threading.RLock()
        self._state = ClassifierState.UNINITIALIZED
        self._handle: Optional[ModelHandle] = None
        self._interpreter = None
        self._input_shape: tuple = ()

    @property
    def state(self) -> ClassifierState:
        return self._state

    @property
    def is_initialized(self) -> bool:
        return self._state is ClassifierState.READY

    @property
    def input_size(self) -> tuple[int, int]:
        """Width and height the model expects"""
        return self._input_shape[2], self._input_shape[1]

    def initialize(self, model_path: Path):
        """Loads a model. Replaces any model loaded before.

        :raises ClassificationError: if the classifier is closed or the model cannot be loaded
        """
        with self._lock:
            if self._state is ClassifierState.CLOSED:
                raise ClassificationError("Classifier is closed.")

            try:
                handle = ModelHandle.open(model_path)
            except (OSError, ValueError) as e:
                raise ClassificationError(f"Could not open model: {e}") from e

            try:
                interpreter = self._interpreter_factory(handle.read())
                input_details = interpreter.get_input_details()[0]
                shape = tuple(int(i) for i in input_details["shape"])
            except Exception as e:
                handle.close()
                raise ClassificationError(f"Could not load model: {e}") from e

            if len(shape) < 3:
                handle.close()
                raise ClassificationError(f"Unsupported model input shape {shape}")

            self._release()
            self._handle = handle
            self._interpreter = interpreter
            self._input_shape = shape
            self._state = ClassifierState.READY

        logger.info("Initialized digit classifier from %s (input %dx%d)", model_path, *self.input_size)

    def _preprocess(self, image: Image.Image) -> numpy.ndarray:
        """Converts an image to the model's input tensor

        The image is converted to grayscale, resized to the input size and scaled to [0, 1].
        """
        if not isinstance(image, Image.Image):
            raise ClassificationError(f"Expected an image, got {type(image).__name__}")
        if image.width == 0 or image.height == 0:
            raise ClassificationError("Cannot classify an empty image")

        resized = image.convert("L").resize(self.input_size, Image.Resampling.LANCZOS)
        pixels = numpy.asarray(resized, dtype=numpy.float32) / 255.0
        return pixels.reshape(self._input_shape)

    def predict(self, image: Image.Image) -> Prediction:
        """Classifies an image

        :raises ClassificationError: if the classifier is not ready, the input is malformed
            or inference fails
        """
        with self._lock:
            if self._state is ClassifierState.UNINITIALIZED:
                raise ClassificationError("Classifier is not initialized yet.")
            if self._state is ClassifierState.CLOSED:
                raise ClassificationError("Classifier is closed.")

            data = self._preprocess(image)
            try:
                input_index = self._interpreter.get_input_details()[0]["index"]
                output_index = self._interpreter.get_output_details()[0]["index"]
                self._interpreter.set_tensor(input_index, data)
                self._interpreter.invoke()
                output = numpy.asarray(self._interpreter.get_tensor(output_index), dtype=numpy.float32)
            except Exception as e:
                raise ClassificationError(f"Inference failed: {e}") from e

        probabilities = output.reshape(-1).tolist()
        if len(probabilities) != NUM_CLASSES:
            raise ClassificationError(f"Model returned {len(probabilities)} values, expected {NUM_CLASSES}")

        digit = probabilities.index(max(probabilities))
        return Prediction(digit, probabilities)

    def classify(self, image: Image.Image) -> str:
        """Classifies an image and returns a human readable result"""
        return self.predict(image).text

    def predict_async(self, image: Image.Image) -> "Future[Prediction]":
        return self._submit(self.predict, image)

    def classify_async(self, image: Image.Image) -> "Future[str]":
        return self._submit(self.classify, image)

    def _submit(self, function, image) -> Future:
        if self._state is ClassifierState.CLOSED:
            future = Future()
            future.set_exception(ClassificationError("Classifier is closed."))
            return future
        try:
            return self._executor.submit(function, image)
        except RuntimeError as e:
            # Executor already shut down
            future = Future()
            future.set_exception(ClassificationError(str(e)))
            return future

    def _release(self):
        self._interpreter = None
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def close(self):
        """Releases the model. Safe to call more than once."""
        with self._lock:
            if self._state is ClassifierState.CLOSED:
                return
            self._state = ClassifierState.CLOSED
            self._release()

        if self._owns_executor:
            self._executor.shutdown(wait=False)
        logger.debug("Closed digit classifier")
