"""Reusable widgets for the digit classifier application"""

from .Canvas import CanvasWidget as Canvas
from .ClassificationResult import ClassificationResult
