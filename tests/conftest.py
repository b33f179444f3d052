"""Pytest configuration and shared fakes for the digit classifier tests."""

import os
from concurrent.futures import Executor, Future
from pathlib import Path

import numpy
import pytest

# Qt widgets are created without a display
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

# A minimal file carrying the TensorFlow Lite identifier
MODEL_BYTES = b"\x1c\x00\x00\x00TFL3" + b"\x00" * 56


class ImmediateExecutor(Executor):
    """Runs submitted work in the calling thread so futures are done on return."""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):
        self.submitted += 1
        future = Future()
        try:
            result = fn(*args, **kwargs)
        except Exception as e:
            future.set_exception(e)
        else:
            future.set_result(result)
        return future


class DeferredExecutor(Executor):
    """Holds submitted work until ``run_all`` is called."""

    def __init__(self):
        self.pending = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run_all(self):
        pending, self.pending = self.pending, []
        for future, fn, args, kwargs in pending:
            try:
                future.set_result(fn(*args, **kwargs))
            except Exception as e:
                future.set_exception(e)


class FakeInterpreter:
    """Stands in for tensorflow.lite.Interpreter."""

    def __init__(self, model_content: bytes, *, input_shape=(1, 28, 28, 1), output=None, error=None):
        self.model_content = model_content
        self.input_shape = input_shape
        self.output = output if output is not None else _one_hot(7)
        self.error = error
        self.inputs = []
        self.invocations = 0

    def get_input_details(self):
        return [{"index": 0, "shape": numpy.array(self.input_shape), "dtype": numpy.float32}]

    def get_output_details(self):
        return [{"index": 1, "shape": numpy.array([1, 10]), "dtype": numpy.float32}]

    def set_tensor(self, index, value):
        assert index == 0
        self.inputs.append(value)

    def invoke(self):
        self.invocations += 1
        if self.error is not None:
            raise self.error

    def get_tensor(self, index):
        assert index == 1
        return numpy.array([self.output], dtype=numpy.float32)


def _one_hot(digit: int, confidence: float = 0.91) -> list[float]:
    rest = (1 - confidence) / 9
    return [confidence if i == digit else rest for i in range(10)]


@pytest.fixture
def one_hot():
    return _one_hot


@pytest.fixture
def model_file(tmp_path: Path) -> Path:
    path = tmp_path / "model.tflite"
    path.write_bytes(MODEL_BYTES)
    return path


@pytest.fixture
def interpreters():
    """Factory for fake interpreters that remembers every interpreter it built"""
    created = []

    class Factory:
        options = {}

        def __call__(self, model_content: bytes):
            interpreter = FakeInterpreter(model_content, **self.options)
            created.append(interpreter)
            return interpreter

        @property
        def created(self):
            return created

    return Factory()


@pytest.fixture(scope="session")
def qapp():
    from PyQt6.QtWidgets import QApplication

    app = QApplication.instance()
    if app is None:
        app = QApplication([])
    yield app
