"""Pass 1: absolute positions, grid snapping and boundary containment checks."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .geometry import Rect, clamp_to, contains, fits_within, port_position, snap
from .scene import (
    BoundaryNode,
    Node,
    Point,
    Port,
    Scene,
    SnapSettings,
    TextNode,
    scene_to_dict,
    validate_scene,
)
from .text_metrics import measure_text_box

logger = logging.getLogger(__name__)

OUT_OF_BOUNDS = "OUT_OF_BOUNDS"
NEG_SIZE = "NEG_SIZE"
PORT_OUTSIDE = "PORT_OUTSIDE"

SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"


@dataclass
class SuggestedFix:
    """Clamped placement for a child that escapes its boundary.

    ``at`` is relative to the boundary (what the caller writes back into the
    node), ``rect`` is the same placement in canvas coordinates. ``resolves``
    is False when the child is larger than the boundary, so moving it cannot
    make it fit.
    """

    at: Point
    rect: Rect
    resolves: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {"at": self.at.to_dict(), "rect": self.rect.to_dict(), "resolves": self.resolves}


@dataclass
class Diagnostic:
    code: str
    node_id: str
    boundary_id: str
    severity: str
    message: str
    actual: Dict[str, Any] = field(default_factory=dict)
    suggested_fix: Optional[SuggestedFix] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "code": self.code,
            "nodeId": self.node_id,
            "boundaryId": self.boundary_id,
            "severity": self.severity,
            "message": self.message,
        }
        if self.actual:
            out["actual"] = self.actual
        if self.suggested_fix is not None:
            out["suggestedFix"] = self.suggested_fix.to_dict()
        return out


@dataclass
class Summary:
    total_nodes: int = 0
    boundaries_processed: int = 0
    errors: int = 0
    warnings: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "totalNodes": self.total_nodes,
            "boundariesProcessed": self.boundaries_processed,
            "errors": self.errors,
            "warnings": self.warnings,
        }


@dataclass
class EnforcementResult:
    """Output of :func:`enforce_boundaries`.

    ``scene`` is the caller's scene, untouched. Absolute rectangles are kept
    out-of-band in ``rects`` (node id -> Rect) and are only valid for the
    scene as it was when enforcement ran.
    """

    scene: Scene
    rects: Dict[str, Rect]
    diagnostics: List[Diagnostic]
    summary: Summary

    def absolute_rect_of(self, node_id: str) -> Optional[Rect]:
        return self.rects.get(node_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scene": scene_to_dict(self.scene, self.rects),
            "diagnostics": [d.to_dict() for d in self.diagnostics],
            "summary": self.summary.to_dict(),
        }


def enforce_boundaries(scene: Scene) -> EnforcementResult:
    """Walk the scene once, computing absolute rects and boundary violations.

    Each boundary checks only its direct children, after snapping them to
    the boundary's grid. Violations become diagnostics with a clamped
    suggested position; the recorded rect keeps the snapped position so the
    painter shows what the scene actually says.

    Raises:
        SceneStructureError: when the scene is malformed (see validate_scene).
    """
    validate_scene(scene)

    rects: Dict[str, Rect] = {}
    owners: Dict[str, BoundaryNode] = {}
    diagnostics: List[Diagnostic] = []
    summary = Summary()

    def _walk(node: Node, parent_x: float, parent_y: float, boundary: Optional[BoundaryNode]) -> None:
        summary.total_nodes += 1
        rect = node_rect(node, parent_x, parent_y)
        if boundary is not None:
            rect = _enforce_child(node, rect, boundary, rects[boundary.id], diagnostics)
            owners[node.id] = boundary
        rects[node.id] = rect

        if isinstance(node, BoundaryNode):
            summary.boundaries_processed += 1
            logger.debug("boundary %s frame=%s policy=%s", node.id, rect, node.effective_policy())
            frame_owner: Optional[BoundaryNode] = node
        else:
            frame_owner = None
        for child in node.children:
            _walk(child, rect.x, rect.y, frame_owner)

    for node in scene.nodes:
        _walk(node, 0, 0, None)
    for port in scene.ports:
        _enforce_port(port, rects, owners, diagnostics)

    summary.errors = sum(1 for d in diagnostics if d.severity == SEVERITY_ERROR)
    summary.warnings = sum(1 for d in diagnostics if d.severity == SEVERITY_WARNING)
    logger.debug(
        "enforced scene %s: %d nodes, %d boundaries, %d errors, %d warnings",
        scene.id,
        summary.total_nodes,
        summary.boundaries_processed,
        summary.errors,
        summary.warnings,
    )
    return EnforcementResult(scene=scene, rects=rects, diagnostics=diagnostics, summary=summary)


def node_rect(node: Node, parent_x: float, parent_y: float) -> Rect:
    """Absolute rect of ``node`` given its parent's absolute origin."""
    x = parent_x + node.at.x
    y = parent_y + node.at.y
    if node.size is not None:
        return Rect(x, y, node.size.width, node.size.height)
    if isinstance(node, TextNode):
        width, height = measure_text_box(node.text, _font_size(node.style), node.style.get("fontFamily"))
        return Rect(x, y, width, height)
    return Rect(x, y, 0, 0)


def _font_size(style: Dict[str, Any]) -> Optional[float]:
    value = style.get("fontSize")
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
        return float(value)
    return None


def _snap_rect(rect: Rect, frame: Rect, settings: SnapSettings) -> Rect:
    if settings.grid <= 0:
        return rect
    if settings.origin == "canvas":
        origin_x, origin_y = 0, 0
    else:
        origin_x, origin_y = frame.x, frame.y
    x = origin_x + snap(rect.x - origin_x, settings.grid)
    y = origin_y + snap(rect.y - origin_y, settings.grid)
    if settings.size:
        return Rect(x, y, snap(rect.w, settings.grid), snap(rect.h, settings.grid))
    return Rect(x, y, rect.w, rect.h)


def _enforce_child(
    node: Node,
    rect: Rect,
    boundary: BoundaryNode,
    frame: Rect,
    diagnostics: List[Diagnostic],
) -> Rect:
    policy = boundary.effective_policy()
    if policy.snap is not None:
        rect = _snap_rect(rect, frame, policy.snap)
    severity = SEVERITY_ERROR if policy.mode == "strict" else SEVERITY_WARNING

    if rect.w < 0 or rect.h < 0:
        diagnostics.append(
            Diagnostic(
                code=NEG_SIZE,
                node_id=node.id,
                boundary_id=boundary.id,
                severity=severity,
                message=f"Node '{node.id}' has a negative size ({rect.w} x {rect.h}).",
                actual={"rect": rect.to_dict()},
            )
        )
        return rect

    if not contains(frame, rect, policy.tolerance):
        clamped = clamp_to(frame, rect)
        resolves = fits_within(frame, rect)
        if resolves and policy.snap is not None and policy.snap.grid > 0:
            on_grid = _snap_inside(clamped, frame, policy.snap, policy.tolerance)
            if on_grid is None:
                resolves = False
            else:
                clamped = on_grid
        fix = SuggestedFix(
            at=Point(clamped.x - frame.x, clamped.y - frame.y),
            rect=clamped,
            resolves=resolves,
        )
        diagnostics.append(
            Diagnostic(
                code=OUT_OF_BOUNDS,
                node_id=node.id,
                boundary_id=boundary.id,
                severity=severity,
                message=f"Node '{node.id}' escapes boundary '{boundary.id}'.",
                actual={"rect": rect.to_dict(), "boundary": frame.to_dict()},
                suggested_fix=fix,
            )
        )
        logger.debug("%s escapes %s: %s outside %s", node.id, boundary.id, rect, frame)
    return rect


def _snap_inside(rect: Rect, frame: Rect, settings: SnapSettings, tolerance: float) -> Optional[Rect]:
    """Move a clamped rect onto the snap grid without leaving the frame.

    Returns None when no grid position on some axis keeps the rect inside,
    so re-snapping the fixed node would break containment again.
    """
    if settings.origin == "canvas":
        origin_x, origin_y = 0, 0
    else:
        origin_x, origin_y = frame.x, frame.y
    x = _grid_point_between(rect.x, origin_x, frame.x - tolerance, frame.right - rect.w + tolerance, settings.grid)
    y = _grid_point_between(rect.y, origin_y, frame.y - tolerance, frame.bottom - rect.h + tolerance, settings.grid)
    if x is None or y is None:
        return None
    return rect.moved_to(x, y)


def _grid_point_between(value: float, origin: float, low: float, high: float, grid: float) -> Optional[float]:
    candidate = origin + snap(value - origin, grid)
    if candidate > high:
        candidate -= grid
    if candidate < low:
        candidate += grid
    if low <= candidate <= high:
        return candidate
    return None


def _enforce_port(
    port: Port,
    rects: Dict[str, Rect],
    owners: Dict[str, BoundaryNode],
    diagnostics: List[Diagnostic],
) -> None:
    """Ports on a boundary's direct child must sit on or inside that boundary."""
    boundary = owners.get(port.node_id)
    host = rects.get(port.node_id)
    if boundary is None or host is None:
        return
    frame = rects[boundary.id]
    policy = boundary.effective_policy()
    x, y = port_position(port.side, port.offset, host)
    if contains(frame, Rect(x, y, 0, 0), policy.tolerance):
        return
    diagnostics.append(
        Diagnostic(
            code=PORT_OUTSIDE,
            node_id=port.node_id,
            boundary_id=boundary.id,
            severity=SEVERITY_ERROR if policy.mode == "strict" else SEVERITY_WARNING,
            message=f"Port '{port.id}' is not on or inside boundary '{boundary.id}'.",
            actual={
                "port": port.id,
                "position": {"x": x, "y": y},
                "host": host.to_dict(),
                "boundary": frame.to_dict(),
            },
        )
    )
    logger.debug("port %s at (%s, %s) outside %s", port.id, x, y, frame)


__all__ = [
    "Diagnostic",
    "EnforcementResult",
    "NEG_SIZE",
    "OUT_OF_BOUNDS",
    "PORT_OUTSIDE",
    "SEVERITY_ERROR",
    "SEVERITY_WARNING",
    "SuggestedFix",
    "Summary",
    "enforce_boundaries",
    "node_rect",
]
