"""A bar chart of the probability the model gave each digit

The most likely digit is highlighted.

Typical Usage:
    >>> chart = ClassificationResult()
    >>> chart.data = [0.01, 0.01, 0.02, 0.01, 0.0, 0.05, 0.0, 0.88, 0.01, 0.01]
    >>> chart.highlighted
    7
    >>> chart.clear()
"""

from typing import List, Optional

import pyqtgraph
from PyQt6.QtGui import QColor, QPen

NUM_CLASSES = 10


class ClassificationResult(pyqtgraph.PlotWidget):
    def __init__(self, *args, barHeight: float = 0.7,
                 barColor: QColor = QColor(120, 120, 120),
                 highlightColor: QColor = QColor(40, 150, 220),
                 **kwargs):
        super().__init__(*args, **kwargs, background=(0, 0, 0, 0))

        self._barHeight = barHeight
        self._barColor = barColor
        self._highlightColor = highlightColor
        self._data: List[float] = [0.0] * NUM_CLASSES

        self.setMouseEnabled(False, False)

        self._configureAxis()
        self._configurePlot()

    @property
    def data(self) -> List[float]:
        return list(self._data)

    @data.setter
    def data(self, value: List[float]):
        value = [float(i) for i in value]
        if len(value) != NUM_CLASSES:
            raise ValueError(f"wrong number of data values (got {len(value)}, expected {NUM_CLASSES})")
        if min(value) < 0 or max(value) > 1:
            raise ValueError("data values must be between 0 and 1")
        self._data = value
        self._draw()

    @property
    def highlighted(self) -> Optional[int]:
        """The digit drawn in the highlight colour, None when there is no data"""
        if max(self._data) == 0:
            return None
        return self._data.index(max(self._data))

    def _draw(self):
        highlighted = self.highlighted
        brushes = [self._highlightColor if i == highlighted else self._barColor for i in range(NUM_CLASSES)]
        self.getPlotItem().clear()
        self.addItem(pyqtgraph.BarGraphItem(
            x0=0, y=list(range(NUM_CLASSES)), height=self._barHeight, width=self._data, brushes=brushes
        ))

    def _configureAxis(self):
        self.setXRange(0, 1)
        self.setYRange(0, NUM_CLASSES - 1)

        leftAxis = pyqtgraph.AxisItem("left", pen=QPen(), textPen=QPen())
        leftAxis.setStyle(stopAxisAtTick=(True, True))
        leftAxis.setTicks([
            [(i, str(i)) for i in range(NUM_CLASSES)]
        ])
        self.setAxisItems({'left': leftAxis})

    def _configurePlot(self):
        plotItem: pyqtgraph.PlotItem = self.getPlotItem()
        plotItem.hideAxis("bottom")
        plotItem.hideButtons()

    def clear(self):
        self.data = [0.0] * NUM_CLASSES
