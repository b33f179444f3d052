"""Handwritten digit classification with a remotely downloaded model.

A model is provisioned from a model registry when the application starts and
every stroke drawn on the canvas is classified with it.
"""

from .classifier import ClassifierState, DigitClassifier, ModelHandle, Prediction
from .config import Settings
from .exceptions import ClassificationError, DigitClassifierError, ProvisioningError
from .provisioning import DownloadConditions, ModelManager, ModelManifest, ModelProvisioner, RemoteModel
