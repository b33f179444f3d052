import pytest
from PIL import Image, ImageDraw

from digit_classifier.classifier import ClassifierState, DigitClassifier, ModelHandle, Prediction
from digit_classifier.exceptions import ClassificationError

from .conftest import MODEL_BYTES, ImmediateExecutor


def _drawing(size=(400, 400)) -> Image.Image:
    image = Image.new("L", size, 0)
    ImageDraw.Draw(image).line([(200, 50), (200, 350)], fill=255, width=40)
    return image


@pytest.fixture
def classifier(interpreters):
    classifier = DigitClassifier(executor=ImmediateExecutor(), interpreter_factory=interpreters)
    yield classifier
    classifier.close()


class TestModelHandle:
    def test_open_maps_file(self, model_file):
        with ModelHandle.open(model_file) as handle:
            assert handle.size == len(MODEL_BYTES)
            assert handle.read() == MODEL_BYTES
            assert not handle.closed
        assert handle.closed

    def test_buffer_unavailable_after_close(self, model_file):
        handle = ModelHandle.open(model_file)
        handle.close()
        handle.close()
        with pytest.raises(ValueError, match="closed"):
            _ = handle.buffer

    def test_rejects_empty_file(self, tmp_path):
        path = tmp_path / "empty.tflite"
        path.write_bytes(b"")
        with pytest.raises(ValueError, match="empty"):
            ModelHandle.open(path)

    def test_rejects_non_tflite_file(self, tmp_path):
        path = tmp_path / "model.onnx"
        path.write_bytes(b"\x08\x07\x12\x04onnx-model")
        with pytest.raises(ValueError, match="not a TensorFlow Lite model"):
            ModelHandle.open(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(OSError):
            ModelHandle.open(tmp_path / "missing.tflite")


class TestPrediction:
    def test_text_contains_digit_and_confidence(self, one_hot):
        prediction = Prediction(3, one_hot(3, 0.875))
        assert prediction.confidence == pytest.approx(0.875)
        assert prediction.text == "Prediction Result: 3\nConfidence: 0.88"


class TestDigitClassifier:
    def test_starts_uninitialized(self, classifier):
        assert classifier.state is ClassifierState.UNINITIALIZED
        assert not classifier.is_initialized

    def test_classify_before_initialize_fails(self, classifier, interpreters):
        with pytest.raises(ClassificationError, match="not initialized"):
            classifier.classify(_drawing())
        assert interpreters.created == []

    def test_initialize_reads_model(self, classifier, interpreters, model_file):
        classifier.initialize(model_file)

        assert classifier.is_initialized
        assert classifier.state is ClassifierState.READY
        assert classifier.input_size == (28, 28)
        assert len(interpreters.created) == 1
        assert interpreters.created[0].model_content == MODEL_BYTES

    def test_classify_returns_prediction_text(self, classifier, model_file):
        classifier.initialize(model_file)
        assert classifier.classify(_drawing()) == "Prediction Result: 7\nConfidence: 0.91"

    def test_input_is_scaled_grayscale_of_model_size(self, classifier, interpreters, model_file):
        classifier.initialize(model_file)
        classifier.predict(_drawing().convert("RGB"))

        data = interpreters.created[0].inputs[0]
        assert data.shape == (1, 28, 28, 1)
        assert data.dtype.name == "float32"
        assert data.min() >= 0.0
        assert data.max() <= 1.0
        assert data.max() > 0.5

    def test_input_shape_without_channel(self, classifier, interpreters, model_file):
        interpreters.options = {"input_shape": (1, 20, 24)}
        classifier.initialize(model_file)
        classifier.predict(_drawing())

        assert classifier.input_size == (24, 20)
        assert interpreters.created[0].inputs[0].shape == (1, 20, 24)

    def test_predict_picks_most_likely_digit(self, classifier, interpreters, model_file, one_hot):
        interpreters.options = {"output": one_hot(2, 0.6)}
        classifier.initialize(model_file)

        prediction = classifier.predict(_drawing())
        assert prediction.digit == 2
        assert prediction.confidence == pytest.approx(0.6)
        assert len(prediction.probabilities) == 10

    def test_rejects_non_image(self, classifier, model_file):
        classifier.initialize(model_file)
        with pytest.raises(ClassificationError, match="Expected an image"):
            classifier.classify(b"not an image")

    def test_rejects_empty_image(self, classifier, model_file):
        classifier.initialize(model_file)
        with pytest.raises(ClassificationError, match="empty image"):
            classifier.classify(Image.new("L", (0, 0)))

    def test_runtime_failure_is_classification_error(self, classifier, interpreters, model_file):
        interpreters.options = {"error": RuntimeError("tensor mismatch")}
        classifier.initialize(model_file)
        with pytest.raises(ClassificationError, match="tensor mismatch"):
            classifier.classify(_drawing())

    def test_wrong_output_size(self, classifier, interpreters, model_file):
        interpreters.options = {"output": [0.5, 0.5]}
        classifier.initialize(model_file)
        with pytest.raises(ClassificationError, match="expected 10"):
            classifier.classify(_drawing())

    def test_initialize_with_invalid_model(self, classifier, tmp_path):
        path = tmp_path / "model.tflite"
        path.write_bytes(b"garbage")
        with pytest.raises(ClassificationError, match="Could not open model"):
            classifier.initialize(path)
        assert not classifier.is_initialized

    def test_initialize_when_interpreter_fails(self, tmp_path, model_file):
        def broken(model_content):
            raise ValueError("Model provided has model identifier 'TFL2'")

        classifier = DigitClassifier(executor=ImmediateExecutor(), interpreter_factory=broken)
        with pytest.raises(ClassificationError, match="Could not load model"):
            classifier.initialize(model_file)
        assert classifier.state is ClassifierState.UNINITIALIZED

    def test_reinitialize_replaces_model(self, classifier, interpreters, model_file):
        classifier.initialize(model_file)
        classifier.initialize(model_file)

        classifier.classify(_drawing())
        assert interpreters.created[0].invocations == 0
        assert interpreters.created[1].invocations == 1

    def test_classify_async_success(self, classifier, model_file):
        classifier.initialize(model_file)
        future = classifier.classify_async(_drawing())
        assert future.result() == "Prediction Result: 7\nConfidence: 0.91"

    def test_classify_async_failure_is_delivered_through_future(self, classifier):
        future = classifier.classify_async(_drawing())
        assert isinstance(future.exception(), ClassificationError)

    def test_close_is_idempotent(self, classifier, model_file):
        classifier.initialize(model_file)
        classifier.close()
        classifier.close()
        assert classifier.state is ClassifierState.CLOSED
        assert not classifier.is_initialized

    def test_classify_after_close_fails_without_inference(self, interpreters, model_file):
        executor = ImmediateExecutor()
        classifier = DigitClassifier(executor=executor, interpreter_factory=interpreters)
        classifier.initialize(model_file)
        classifier.close()

        future = classifier.predict_async(_drawing())
        assert isinstance(future.exception(), ClassificationError)
        assert executor.submitted == 0
        assert interpreters.created[0].invocations == 0

        with pytest.raises(ClassificationError, match="closed"):
            classifier.classify(_drawing())

    def test_initialize_after_close_fails(self, classifier, model_file):
        classifier.close()
        with pytest.raises(ClassificationError, match="closed"):
            classifier.initialize(model_file)

    def test_owned_executor_runs_in_background(self, interpreters, model_file):
        classifier = DigitClassifier(interpreter_factory=interpreters)
        try:
            classifier.initialize(model_file)
            assert classifier.predict_async(_drawing()).result(timeout=5).digit == 7
        finally:
            classifier.close()
