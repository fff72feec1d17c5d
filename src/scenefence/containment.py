"""Pass 2 inputs: clip-path and mask definitions derived from boundary policies."""
from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .enforcement import EnforcementResult, enforce_boundaries
from .geometry import Rect, format_length
from .scene import BoundaryNode, Node, Scene, iter_nodes

SVG_NS = "http://www.w3.org/2000/svg"
DEFAULT_BORDER_RADIUS = 8.0
MASK_FEATHER = 4.0


@dataclass
class ClipDefinition:
    id: str
    rect: Rect
    type: str
    border_radius: float = DEFAULT_BORDER_RADIUS

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "rect": self.rect.to_dict(), "type": self.type}


@dataclass
class ContainmentContext:
    clip_paths: List[ClipDefinition] = field(default_factory=list)

    @property
    def clips(self) -> List[ClipDefinition]:
        return [d for d in self.clip_paths if d.type == "clip"]

    @property
    def masks(self) -> List[ClipDefinition]:
        return [d for d in self.clip_paths if d.type == "mask"]

    def to_dict(self) -> Dict[str, Any]:
        return {"clipPaths": [d.to_dict() for d in self.clip_paths]}


def clip_id_for(boundary_id: str) -> str:
    return f"clip-{boundary_id}"


def needs_containment(node: Node) -> bool:
    """True for boundaries whose effective policy is strict.

    A boundary without a policy uses the default policy, which is strict.
    """
    if not isinstance(node, BoundaryNode):
        return False
    return node.effective_policy().mode == "strict"


def generate_clip_path(
    boundary: BoundaryNode,
    rect: Optional[Rect] = None,
    border_radius: float = DEFAULT_BORDER_RADIUS,
) -> ClipDefinition:
    """Clip or mask definition for ``boundary``.

    ``rect`` is the boundary's absolute rect from pass 1; without it the
    boundary's own position and size are used, which is only correct for
    top-level boundaries.
    """
    if rect is None:
        size = boundary.size
        width = size.width if size is not None else 0
        height = size.height if size is not None else 0
        rect = Rect(boundary.at.x, boundary.at.y, width, height)
    overflow = boundary.effective_policy().overflow
    return ClipDefinition(
        id=clip_id_for(boundary.id),
        rect=rect,
        type="mask" if overflow == "mask" else "clip",
        border_radius=border_radius,
    )


def collect_containment_requirements(source: Union[EnforcementResult, Scene]) -> ContainmentContext:
    """One definition per boundary that needs containment, in scene order."""
    result = source if isinstance(source, EnforcementResult) else enforce_boundaries(source)
    context = ContainmentContext()
    for node in iter_nodes(result.scene.nodes):
        if needs_containment(node):
            context.clip_paths.append(generate_clip_path(node, result.rects.get(node.id)))
    return context


def containment_attributes(boundary: BoundaryNode) -> Dict[str, str]:
    """Attribute that applies the boundary's definition to its painted content."""
    if not needs_containment(boundary):
        return {}
    ref = f"url(#{clip_id_for(boundary.id)})"
    if boundary.effective_policy().overflow == "mask":
        return {"mask": ref}
    return {"clip-path": ref}


def clip_definition_element(definition: ClipDefinition) -> List[ET.Element]:
    """SVG elements for one definition: a hard-edged clipPath, or a feathered mask."""
    rect = definition.rect
    rect_attrs = {
        "x": format_length(rect.x),
        "y": format_length(rect.y),
        "width": format_length(rect.w),
        "height": format_length(rect.h),
        "rx": format_length(definition.border_radius),
        "ry": format_length(definition.border_radius),
    }
    if definition.type != "mask":
        clip = ET.Element(_q("clipPath"), {"id": definition.id})
        ET.SubElement(clip, _q("rect"), rect_attrs)
        return [clip]

    feather_id = f"{definition.id}-feather"
    feather = ET.Element(_q("filter"), {"id": feather_id})
    ET.SubElement(feather, _q("feGaussianBlur"), {"stdDeviation": format_length(MASK_FEATHER)})
    mask = ET.Element(_q("mask"), {"id": definition.id})
    rect_attrs.update({"fill": "white", "filter": f"url(#{feather_id})"})
    ET.SubElement(mask, _q("rect"), rect_attrs)
    return [feather, mask]


def containment_defs(context: ContainmentContext) -> List[ET.Element]:
    elements: List[ET.Element] = []
    for definition in context.clips + context.masks:
        elements.extend(clip_definition_element(definition))
    return elements


def _q(tag: str) -> str:
    return f"{{{SVG_NS}}}{tag}"


__all__ = [
    "ClipDefinition",
    "ContainmentContext",
    "clip_definition_element",
    "clip_id_for",
    "collect_containment_requirements",
    "containment_attributes",
    "containment_defs",
    "generate_clip_path",
    "needs_containment",
]
