import logging
from abc import ABC
from io import BytesIO
from typing import Any

from PIL import Image
from PyQt6.QtCore import QBuffer, QIODevice
from PyQt6.QtGui import QImage
from PyQt6.QtWidgets import QApplication, QMainWindow

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class Controller(ABC):
    def __init__(self):
        self._view: QMainWindow = NotImplemented
        self._model: Any = NotImplemented
        self._app: QApplication = NotImplemented

    def run(self) -> int:
        """Runs the application

        :return: exit code returned by the application. Usually 0 if nothing went wrong.
        """
        self._view.show()

        return self._app.exec()


def PIL_from_QImage(image: QImage) -> Image.Image:
    buffer = QBuffer()
    buffer.open(QIODevice.OpenModeFlag.ReadWrite)
    image.save(buffer, "PNG")
    data = bytes(buffer.data())
    buffer.close()
    return Image.open(BytesIO(data)).convert("L")


def configure_logging(level: str = "INFO"):
    """Sets up the root logger for the command line and the GUI"""
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT, force=True)
