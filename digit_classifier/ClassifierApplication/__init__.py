"""Application to classify handwritten digits.

The application downloads a digit classification model from a model registry
when it starts and classifies the drawing every time a stroke is finished.
"""

from .ClassifierApplication import ClassifierController as Controller
