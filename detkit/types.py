from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class Rect:
    """
    Axis-aligned rectangle, (x, y) is the upper-left corner.
    """

    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_xyxy(cls, x1: float, y1: float, x2: float, y2: float) -> "Rect":
        return cls(x=float(x1), y=float(y1), width=float(x2 - x1), height=float(y2 - y1))

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x, self.y, self.x2, self.y2


@dataclass(frozen=True)
class Detection:
    """
    Decoded candidate shared by every head decoder and by NMS.
    """

    rect: Rect
    class_id: int
    score: float

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.rect.as_xyxy()
