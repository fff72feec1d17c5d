"""Rectangle helpers shared by enforcement, containment and painting."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Tuple


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    w: float
    h: float

    @property
    def right(self) -> float:
        return self.x + self.w

    @property
    def bottom(self) -> float:
        return self.y + self.h

    def moved_to(self, x: float, y: float) -> "Rect":
        return Rect(x, y, self.w, self.h)

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "w": self.w, "h": self.h}


def snap(value: float, grid: float) -> float:
    """Round ``value`` to the nearest multiple of ``grid``, halves rounding up.

    A non-positive grid disables snapping.
    """
    if grid <= 0:
        return value
    return math.floor(value / grid + 0.5) * grid


def clamp_to(container: Rect, child: Rect) -> Rect:
    """Move ``child`` the minimum amount needed to sit inside ``container``.

    Size is never changed. On an axis where the child is larger than the
    container, the child is pinned to the container origin.
    """
    x = max(container.x, min(child.x, container.right - child.w))
    y = max(container.y, min(child.y, container.bottom - child.h))
    return Rect(x, y, child.w, child.h)


def contains(container: Rect, candidate: Rect, tolerance: float = 0) -> bool:
    return (
        candidate.x >= container.x - tolerance
        and candidate.y >= container.y - tolerance
        and candidate.right <= container.right + tolerance
        and candidate.bottom <= container.bottom + tolerance
    )


def fits_within(container: Rect, candidate: Rect) -> bool:
    return candidate.w <= container.w and candidate.h <= container.h


def format_length(value: float) -> str:
    if math.isclose(value, round(value)):
        return str(int(round(value)))
    return f"{value:.3f}".rstrip("0").rstrip(".")


def port_position(side: str, offset: float, host: Rect) -> Tuple[float, float]:
    """Point on ``host``'s edge for a port; ``offset`` runs along that edge."""
    if side == "left":
        return host.x, host.y + offset
    if side == "right":
        return host.right, host.y + offset
    if side == "top":
        return host.x + offset, host.y
    return host.x + offset, host.bottom


__all__ = ["Rect", "snap", "clamp_to", "contains", "fits_within", "format_length", "port_position"]
