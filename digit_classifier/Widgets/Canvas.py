""""A smooth drawing widget that lets users paint digits on

White strokes are drawn on a black background, matching the MNIST dataset.
The smoothing parameters can be fine tuned to create a better visual.

    Typical Usage Example:

    >>> canvas = CanvasWidget()
    >>> canvas.strokeFinished.connect(lambda: print(canvas.image()))
    >>> canvas.clear()
"""

import sys
from typing import List, Optional

from PIL import Image
from PyQt6.QtCore import QPointF, QRectF, Qt, pyqtBoundSignal, pyqtSignal
from PyQt6.QtGui import QColor, QImage, QMouseEvent, QPainter, QPainterPath, QPen
from PyQt6.QtWidgets import QApplication, QFrame, QGraphicsScene, QGraphicsView

from digit_classifier._utilities import PIL_from_QImage


class CanvasWidget(QGraphicsView):
    strokeFinished: pyqtBoundSignal = pyqtSignal()

    def __init__(self, *args, smoothingFactor: float = 0.4, smoothingLength: int = 15,
                 pen: Optional[QPen] = None, smooth: bool = True,
                 background: QColor = QColor(Qt.GlobalColor.black),
                 **kwargs):
        """Creates a CanvasWidget

        :param float smoothingFactor: between 0 and 1, controls the magnitude of smoothing
        :param int smoothingLength: the maximum number of points to perform smoothing on
        :param QPen pen: the pen to draw lines with
        :param QColor background: the colour behind the strokes
        """
        super().__init__(*args, **kwargs)

        self._smoothingFactor = smoothingFactor
        self._smoothingLength = smoothingLength

        if smooth:
            self.setRenderHint(QPainter.RenderHint.Antialiasing)

        if pen is None:
            self._pen = QPen(Qt.GlobalColor.white,
                             30,
                             Qt.PenStyle.SolidLine,
                             Qt.PenCapStyle.RoundCap,
                             Qt.PenJoinStyle.RoundJoin)
        else:
            self._pen = pen

        self.smooth = smooth
        self._scene = QGraphicsScene(self)
        self._background = QColor(background)
        self._scene.setBackgroundBrush(self._background)
        self.setScene(self._scene)

        self.setFrameShape(QFrame.Shape.NoFrame)
        self.setHorizontalScrollBarPolicy(Qt.ScrollBarPolicy.ScrollBarAlwaysOff)
        self.setVerticalScrollBarPolicy(Qt.ScrollBarPolicy.ScrollBarAlwaysOff)

        self._lines: List[List[QPointF]] = []
        self._drawing = False

    def resizeEvent(self, event) -> None:
        rect = self.contentsRect()
        self.setSceneRect(0, 0, rect.width(), rect.height())

    def _smooth(self):
        """Applies an exponential smoothing function to the last line

        Where:
            p1 = last point
            p0 = point before
            a = smoothingFactor
            N = smoothingLength

        Along both axis (x and Y):
            p0 = p0 * smoothingFactor + p1 * (1 - smoothingFactor)

        This is run for the last N points
        """
        # Shorten the smooth length if we don't have enough points
        smoothLength = min(int(len(self._lines[-1]) / 2 - 1), self._smoothingLength)

        for i in range(smoothLength):
            p0 = self._lines[-1][-(i + 2)]
            p1 = self._lines[-1][-(i + 1)]
            p0.setX(p0.x() * self._smoothingFactor + p1.x() * (1 - self._smoothingFactor))
            p0.setY(p0.y() * self._smoothingFactor + p1.y() * (1 - self._smoothingFactor))

    def _draw(self):
        """Redraws the lines onto the canvas"""
        self._scene.clear()
        for line in self._lines:
            path = QPainterPath()
            path.moveTo(line[0])
            for point in line:
                path.lineTo(point)
            self._scene.addPath(path, pen=self._pen)

    def mouseMoveEvent(self, event: QMouseEvent):
        if self._drawing and event.buttons() & Qt.MouseButton.LeftButton:
            self._lines[-1].append(QPointF(event.position()))
            if self.smooth:
                self._smooth()
            self._draw()

    def mousePressEvent(self, event: QMouseEvent):
        if event.button() == Qt.MouseButton.LeftButton:
            self._drawing = True
            self._lines.append([QPointF(event.position())])
            self._draw()

    def mouseReleaseEvent(self, event: QMouseEvent):
        if self._drawing and event.button() == Qt.MouseButton.LeftButton:
            self._drawing = False
            self.strokeFinished.emit()

    def isEmpty(self) -> bool:
        return len(self._lines) == 0

    def image(self) -> Image.Image:
        """Returns a grayscale snapshot of the canvas

        The scene is rendered directly, so this works before the widget is shown.

        :raises ValueError: if the canvas has no area
        """
        size = self.size()
        if size.isEmpty():
            raise ValueError("canvas has no area to capture")

        image = QImage(size, QImage.Format.Format_RGB32)
        image.fill(self._background)
        painter = QPainter(image)
        try:
            painter.setRenderHint(QPainter.RenderHint.Antialiasing, self.smooth)
            # Stroke points are stored in widget coordinates
            area = QRectF(0, 0, size.width(), size.height())
            self._scene.render(painter, area, area, Qt.AspectRatioMode.IgnoreAspectRatio)
        finally:
            painter.end()
        return PIL_from_QImage(image)

    def clear(self):
        """Clears the canvas"""
        self._lines.clear()
        self._scene.clear()
        self._drawing = False


if __name__ == '__main__':
    # Widget Demonstration
    app = QApplication(sys.argv)
    widget = CanvasWidget()
    widget.resize(500, 500)
    widget.strokeFinished.connect(lambda: print("Stroke finished"))
    widget.show()
    sys.exit(app.exec())
