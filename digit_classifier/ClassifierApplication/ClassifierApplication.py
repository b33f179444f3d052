import logging
import sys
from concurrent.futures import Future
from pathlib import Path
from typing import Callable, Optional, Set

from PyQt6.QtCore import Qt
from PyQt6.QtGui import QAction, QFont
from PyQt6.QtWidgets import QApplication, QHBoxLayout, QLabel, QMainWindow, QMenu, QPushButton, QVBoxLayout, \
    QWidget

from digit_classifier.ClassifierApplication.workers import FutureWatcher
from digit_classifier.Widgets import Canvas, ClassificationResult
from digit_classifier._utilities import Controller
from digit_classifier.classifier import DigitClassifier, Prediction
from digit_classifier.config import Settings
from digit_classifier.exceptions import DigitClassifierError
from digit_classifier.provisioning import ModelManager, ModelProvisioner

logger = logging.getLogger(__name__)

PLACEHOLDER_TEXT = "Please draw a digit."
CLASSIFICATION_ERROR_TEXT = "Error to classify drawing: {}"
DOWNLOADED_TEXT = "Downloaded remote model: {}"
DOWNLOAD_FAILED_TEXT = "Model download failed for digit classifier, please check your connection."
MODEL_FILE_FAILED_TEXT = "Failed to get model file."


class ClassifierWindow(QMainWindow):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)

        # Window Settings
        self.setWindowTitle("Digit Classifier")
        self.setFixedSize(640, 460)

        # Central Widget
        widget = QWidget(self)
        self.setCentralWidget(widget)

        # Menu Actions
        self.smoothAction: QAction
        self.quitAction: QAction

        # Widgets
        self.canvas: Canvas
        self.clearButton: QPushButton
        self.results: ClassificationResult
        self.predictedText: QLabel

        # Factories
        self._createActions()
        self._createMenuBar()
        self._createWidgets()

    def _createActions(self):
        self.quitAction = QAction("&Quit", self)

        self.smoothAction = QAction("&Smooth Drawing", self)
        self.smoothAction.setCheckable(True)
        self.smoothAction.setChecked(True)

    def _createMenuBar(self):
        menuBar = self.menuBar()

        fileMenu = QMenu("&File", self)
        fileMenu.setFixedWidth(170)
        fileMenu.addAction(self.smoothAction)
        fileMenu.addSeparator()
        fileMenu.addAction(self.quitAction)
        menuBar.addMenu(fileMenu)

    def _createWidgets(self):
        outerLayout = QHBoxLayout()
        self.centralWidget().setLayout(outerLayout)

        # Canvas
        self.canvas = Canvas(self)
        self.canvas.setFixedSize(400, 400)
        outerLayout.addWidget(self.canvas)

        rightLayout = QVBoxLayout()
        outerLayout.addLayout(rightLayout)

        self.clearButton = QPushButton("Clear")
        rightLayout.addWidget(self.clearButton)

        # Classification Results
        self.results = ClassificationResult(self)
        rightLayout.addWidget(self.results, stretch=1)

        # Prediction
        self.predictedText = QLabel(PLACEHOLDER_TEXT, self)
        self.predictedText.setAlignment(Qt.AlignmentFlag.AlignHCenter)
        self.predictedText.setWordWrap(True)
        self.predictedText.setStyleSheet("padding: 10px")
        self.predictedText.setFont(QFont("monospace", 12, 700))
        rightLayout.addWidget(self.predictedText, alignment=Qt.AlignmentFlag.AlignBottom)

    def showNotification(self, text: str):
        """Shows a message in the status bar until it is replaced"""
        self.statusBar().showMessage(text)


class ClassifierController(Controller):
    """Connects the window to the model provisioner and the classifier.

    The model is provisioned once when the controller is created. Every finished
    stroke is classified once the classifier has been initialized.
    """

    def __init__(self, application: QApplication, settings: Settings, *,
                 provisioner: Optional[ModelProvisioner] = None,
                 classifier: Optional[DigitClassifier] = None,
                 view: Optional[ClassifierWindow] = None):
        super().__init__()
        self._app = application
        self._settings = settings
        self._view = view if view is not None else ClassifierWindow()
        self._model = classifier if classifier is not None else DigitClassifier()

        if provisioner is None:
            manager = ModelManager(settings.registry_url, settings.models_dir,
                                   is_metered=lambda: settings.metered, timeout=settings.timeout)
            provisioner = ModelProvisioner(manager)
        self._provisioner = provisioner

        self._watchers: Set[FutureWatcher] = set()
        self._closed = False

        self._connectSlots()
        self._setupDigitClassifier()

    @property
    def view(self) -> ClassifierWindow:
        return self._view

    @property
    def classifier(self) -> DigitClassifier:
        return self._model

    def _connectSlots(self):
        self._view.quitAction.triggered.connect(self._app.quit)
        self._app.aboutToQuit.connect(self.close)

        self._view.clearButton.clicked.connect(self._clear)
        self._view.canvas.strokeFinished.connect(self._classifyDrawing)
        self._view.smoothAction.triggered.connect(self._setSmoothing)

    def _watch(self, future: Future, onSuccess: Callable, onFailure: Callable):
        """Delivers the outcome of a future to the main thread"""
        watcher = FutureWatcher(future)
        self._watchers.add(watcher)

        def finished(callback, value):
            self._watchers.discard(watcher)
            callback(value)

        watcher.succeeded.connect(lambda value: finished(onSuccess, value))
        watcher.failed.connect(lambda error: finished(onFailure, error))
        watcher.start()

    def _setSmoothing(self):
        self._view.canvas.smooth = self._view.smoothAction.isChecked()

    def _setupDigitClassifier(self):
        logger.info("Provisioning model %s from %s", self._settings.model_name, self._settings.registry_url)
        future = self._provisioner.provision(self._settings.model_name)
        self._watch(future, self._onModelProvisioned, self._onProvisioningFailed)

    def _onModelProvisioned(self, path: Path):
        if self._closed:
            return
        try:
            self._model.initialize(path)
        except DigitClassifierError as e:
            logger.error("Could not initialize classifier: %s", e)
            self._view.showNotification(MODEL_FILE_FAILED_TEXT)
        else:
            self._view.showNotification(DOWNLOADED_TEXT.format(path))

    def _onProvisioningFailed(self, error: BaseException):
        logger.error("Model provisioning failed: %s", error, exc_info=error)
        self._view.showNotification(DOWNLOAD_FAILED_TEXT)

    def _clear(self):
        self._view.canvas.clear()
        self._view.results.clear()
        self._view.predictedText.setText(PLACEHOLDER_TEXT)

    def _classifyDrawing(self):
        if not self._model.is_initialized:
            return
        try:
            image = self._view.canvas.image()
        except (OSError, ValueError) as e:
            self._onClassificationFailed(e)
            return
        future = self._model.predict_async(image)
        self._watch(future, self._onPrediction, self._onClassificationFailed)

    def _onPrediction(self, prediction: Prediction):
        self._view.predictedText.setText(prediction.text)
        # Models without a softmax layer return logits
        self._view.results.data = [min(max(p, 0.0), 1.0) for p in prediction.probabilities]

    def _onClassificationFailed(self, error: BaseException):
        logger.error("Error classifying drawing.", exc_info=error)
        self._view.predictedText.setText(CLASSIFICATION_ERROR_TEXT.format(error))

    def close(self):
        """Releases the classifier and stops provisioning. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._model.close()
        self._provisioner.close()


if __name__ == '__main__':
    app = QApplication(sys.argv)
    ClassifierController(app, Settings.from_env()).run()
