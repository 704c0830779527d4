"""Rectangle and line-clipping helpers shared by both layout engines."""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

Point = Tuple[float, float]

_LINE_BREAK = re.compile(r"\\n|\n")


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> Point:
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)

    @property
    def center_x(self) -> float:
        return self.x + self.width / 2.0

    def shifted(self, dx: float, dy: float) -> "Rect":
        return Rect(self.x + dx, self.y + dy, self.width, self.height)

    def overlaps_x(self, other: "Rect") -> bool:
        return self.x < other.right and other.x < self.right


def text_lines(text: Optional[str]) -> List[str]:
    """Split label text on real newlines and on literal ``\\n`` escapes."""
    if not text:
        return [""]
    return _LINE_BREAK.split(text)


def longest_line(text: Optional[str]) -> int:
    return max(len(line) for line in text_lines(text))


def union_bounds(rects: Iterable[Rect]) -> Optional[Tuple[float, float, float, float]]:
    min_x = min_y = math.inf
    max_x = max_y = -math.inf
    seen = False
    for rect in rects:
        seen = True
        min_x = min(min_x, rect.x)
        min_y = min(min_y, rect.y)
        max_x = max(max_x, rect.right)
        max_y = max(max_y, rect.bottom)
    if not seen:
        return None
    return min_x, min_y, max_x, max_y


def clip_to_rect(center: Point, toward: Point, rect: Rect, padding: float = 0.0) -> Point:
    cx, cy = center
    dx = toward[0] - cx
    dy = toward[1] - cy
    if math.hypot(dx, dy) == 0:
        return center
    half_w = rect.width / 2.0 + padding
    half_h = rect.height / 2.0 + padding
    abs_dx = abs(dx)
    abs_dy = abs(dy)
    if abs_dx * half_h > abs_dy * half_w:
        scale = half_w / abs_dx
    else:
        scale = half_h / abs_dy
    return (cx + dx * scale, cy + dy * scale)


def clip_to_circle(center: Point, toward: Point, radius: float) -> Point:
    cx, cy = center
    dx = toward[0] - cx
    dy = toward[1] - cy
    dist = math.hypot(dx, dy)
    if dist == 0:
        return center
    scale = radius / dist
    return (cx + dx * scale, cy + dy * scale)


def segment_hits_rect(p1: Point, p2: Point, rect: Rect, margin: float = 5.0) -> bool:
    """True when the point of the segment closest to the rect center lies inside the (grown) rect."""
    min_x, max_x = min(p1[0], p2[0]), max(p1[0], p2[0])
    min_y, max_y = min(p1[1], p2[1]), max(p1[1], p2[1])
    if max_x < rect.x or min_x > rect.right or max_y < rect.y or min_y > rect.bottom:
        return False

    vx = p2[0] - p1[0]
    vy = p2[1] - p1[1]
    seg_len_sq = vx * vx + vy * vy
    if seg_len_sq == 0:
        return False
    cx, cy = rect.center
    t = ((cx - p1[0]) * vx + (cy - p1[1]) * vy) / seg_len_sq
    t = max(0.0, min(1.0, t))
    px = p1[0] + t * vx
    py = p1[1] + t * vy
    return (
        rect.x - margin <= px <= rect.right + margin
        and rect.y - margin <= py <= rect.bottom + margin
    )


def cubic_midpoint(p0: Point, c1: Point, c2: Point, p3: Point) -> Point:
    return (
        (p0[0] + 3 * c1[0] + 3 * c2[0] + p3[0]) / 8.0,
        (p0[1] + 3 * c1[1] + 3 * c2[1] + p3[1]) / 8.0,
    )
