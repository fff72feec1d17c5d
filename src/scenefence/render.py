"""Two-pass scene rendering: enforce boundaries, collect containment, paint SVG."""
from __future__ import annotations

import logging
import math
import xml.etree.ElementTree as ET
from typing import Any, Callable, Dict, List, Optional, Tuple

from .containment import (
    SVG_NS,
    ContainmentContext,
    collect_containment_requirements,
    containment_attributes,
    containment_defs,
    needs_containment,
)
from .enforcement import EnforcementResult, enforce_boundaries
from .geometry import Rect, format_length as _fmt, port_position
from .scene import (
    BoundaryNode,
    Connector,
    Endpoint,
    Flow,
    GroupNode,
    Node,
    Port,
    RawSvgNode,
    SceneStructureError,
    ShapeNode,
    SpriteNode,
    TextNode,
)
from .text_metrics import DEFAULT_FONT_SIZE

ET.register_namespace("", SVG_NS)

logger = logging.getLogger(__name__)

ARROW_MARKER_ID = "arrowHead"
CONNECTOR_STROKE = "#94a3b8"
BOUNDARY_RADIUS = 8
BOUNDARY_LABEL_COLOR = "#e6edf3"
TITLE_OFFSET = 8
CURVE_SAMPLES = 16

STYLE_SHEET = """
.connector { stroke-linecap: round; stroke-linejoin: round; }
.boundary-title { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; font-weight: 600; }
.flow-token { animation-fill-mode: forwards; }
.boundary-contained { overflow: hidden; }
"""

# anchor -> (fraction of width, fraction of height, text-anchor, dominant-baseline)
_TEXT_ANCHORS: Dict[str, Tuple[float, float, str, str]] = {
    "tl": (0.0, 0.0, "start", "hanging"),
    "t": (0.5, 0.0, "middle", "hanging"),
    "tr": (1.0, 0.0, "end", "hanging"),
    "l": (0.0, 0.5, "start", "middle"),
    "center": (0.5, 0.5, "middle", "middle"),
    "r": (1.0, 0.5, "end", "middle"),
    "bl": (0.0, 1.0, "start", "text-after-edge"),
    "b": (0.5, 1.0, "middle", "text-after-edge"),
    "br": (1.0, 1.0, "end", "text-after-edge"),
}

Point2 = Tuple[float, float]


def render_scene(scene) -> str:
    """Render ``scene`` to SVG text using the two-pass pipeline."""
    svg_text, _result = render_scene_with_diagnostics(scene)
    return svg_text


def render_scene_with_diagnostics(scene) -> Tuple[str, EnforcementResult]:
    result = enforce_boundaries(scene)
    context = collect_containment_requirements(result)
    svg_root = paint(result, context)
    return _pretty_xml(svg_root), result


def paint(result: EnforcementResult, context: ContainmentContext) -> ET.Element:
    """Serialise a pass-1 result to an SVG element tree.

    Nodes sit at their pass-1 absolute rects: snapping is applied, suggested
    fixes are not.
    """
    scene = result.scene
    width = _fmt(scene.canvas.width)
    height = _fmt(scene.canvas.height)
    svg_root = ET.Element(
        _q("svg"),
        {
            "width": width,
            "height": height,
            "viewBox": f"0 0 {width} {height}",
            "role": "img",
            "aria-label": scene.id,
        },
    )

    defs = ET.SubElement(svg_root, _q("defs"))
    for index, fragment in enumerate(scene.defs.gradients):
        _graft(defs, fragment, f"defs.gradients[{index}]")
    for index, fragment in enumerate(scene.defs.filters):
        _graft(defs, fragment, f"defs.filters[{index}]")
    for symbol in scene.defs.symbols:
        symbol_elem = ET.SubElement(defs, _q("symbol"), {"id": symbol.id})
        _graft(symbol_elem, symbol.svg, f"symbol '{symbol.id}'")
    defs.extend(containment_defs(context))
    if any(c.marker_end == "arrow" for c in scene.connectors):
        _ensure_arrow_marker(defs)

    style = ET.SubElement(svg_root, _q("style"))
    style.text = STYLE_SHEET

    if scene.bg:
        ET.SubElement(
            svg_root,
            _q("rect"),
            {"x": "0", "y": "0", "width": "100%", "height": "100%", "fill": scene.bg},
        )
    for index, fragment in enumerate(scene.defs.raw_svg):
        _graft(svg_root, fragment, f"defs.rawSvg[{index}]")

    ports = {port.id: port for port in scene.ports}
    for connector in scene.connectors:
        elem = _emit_connector(connector, result.rects, ports)
        if elem is not None:
            svg_root.append(elem)

    for node in _z_sorted(scene.nodes):
        svg_root.append(_emit_node(node, result.rects))

    connectors = {connector.resolved_id(): connector for connector in scene.connectors}
    for flow in scene.flows:
        elem = _emit_flow(flow, connectors, result.rects, ports)
        if elem is not None:
            svg_root.append(elem)

    return svg_root


# ---------------------------------------------------------------------------
# Nodes


def _emit_node(node: Node, rects: Dict[str, Rect]) -> ET.Element:
    painter = _NODE_PAINTERS[node.kind]
    elem = painter(node, rects[node.id], rects)
    if node.children and not isinstance(node, (BoundaryNode, GroupNode)):
        wrapper = ET.Element(_q("g"), {"class": f"{node.kind}-with-children"})
        wrapper.append(elem)
        for child in _z_sorted(node.children):
            wrapper.append(_emit_node(child, rects))
        return wrapper
    return elem


def _emit_boundary(node: BoundaryNode, rect: Rect, rects: Dict[str, Rect]) -> ET.Element:
    css_class = "boundary boundary-contained" if needs_containment(node) else "boundary"
    group = ET.Element(_q("g"), {"id": node.id, "class": _with_class_name(css_class, node.style)})
    frame = ET.SubElement(group, _q("rect"), _box_attrs(rect))
    frame.set("rx", str(BOUNDARY_RADIUS))
    _apply_style(frame, node.style)
    if node.title:
        title = ET.SubElement(
            group,
            _q("text"),
            {
                "x": _fmt(rect.x + 12),
                "y": _fmt(rect.y - TITLE_OFFSET),
                "class": "boundary-title",
                "fill": str(node.style.get("labelColor", BOUNDARY_LABEL_COLOR)),
                "font-size": "14",
            },
        )
        title.text = node.title
    content = ET.SubElement(group, _q("g"), {"class": "boundary-content"})
    for key, value in containment_attributes(node).items():
        content.set(key, value)
    for child in _z_sorted(node.children):
        content.append(_emit_node(child, rects))
    return group


def _emit_group(node: GroupNode, rect: Rect, rects: Dict[str, Rect]) -> ET.Element:
    group = ET.Element(_q("g"), {"id": node.id})
    _apply_style(group, node.style)
    for child in _z_sorted(node.children):
        group.append(_emit_node(child, rects))
    return group


def _emit_sprite(node: SpriteNode, rect: Rect, rects: Dict[str, Rect]) -> ET.Element:
    sprite = node.sprite
    if sprite.inline is None:
        elem = ET.Element(
            _q("use"),
            {"id": node.id, "href": f"#{sprite.symbol_id}", **_box_attrs(rect)},
        )
        _apply_style(elem, node.style)
        return elem
    if sprite.view_box is not None:
        elem = ET.Element(
            _q("svg"),
            {"id": node.id, "viewBox": " ".join(_fmt(v) for v in sprite.view_box), **_box_attrs(rect)},
        )
    else:
        elem = ET.Element(_q("g"), {"id": node.id, "transform": _transform_attr(node, rect)})
    _apply_style(elem, node.style)
    _graft(elem, sprite.inline, f"sprite '{node.id}'")
    return elem


def _emit_shape(node: ShapeNode, rect: Rect, rects: Dict[str, Rect]) -> ET.Element:
    if node.shape == "circle":
        elem = ET.Element(
            _q("circle"),
            {
                "id": node.id,
                "cx": _fmt(rect.x + rect.w / 2),
                "cy": _fmt(rect.y + rect.h / 2),
                "r": _fmt(min(rect.w, rect.h) / 2),
            },
        )
    elif node.shape == "path":
        elem = ET.Element(
            _q("path"),
            {"id": node.id, "d": node.d or "", "transform": _transform_attr(node, rect)},
        )
    else:
        elem = ET.Element(_q("rect"), {"id": node.id, **_box_attrs(rect)})
        elem.set("rx", str(BOUNDARY_RADIUS if node.shape == "roundedRect" else 0))
    _apply_style(elem, node.style)
    return elem


def _emit_text(node: TextNode, rect: Rect, rects: Dict[str, Rect]) -> ET.Element:
    fx, fy, text_anchor, baseline = _TEXT_ANCHORS[node.anchor]
    elem = ET.Element(
        _q("text"),
        {
            "id": node.id,
            "x": _fmt(rect.x + rect.w * fx),
            "y": _fmt(rect.y + rect.h * fy),
            "text-anchor": text_anchor,
            "dominant-baseline": baseline,
        },
    )
    if "fontSize" not in node.style:
        elem.set("font-size", _fmt(DEFAULT_FONT_SIZE))
    _apply_style(elem, node.style)
    elem.text = node.text
    return elem


def _emit_raw_svg(node: RawSvgNode, rect: Rect, rects: Dict[str, Rect]) -> ET.Element:
    elem = ET.Element(_q("g"), {"id": node.id, "transform": _transform_attr(node, rect)})
    _apply_style(elem, node.style)
    _graft(elem, node.raw_svg, f"raw-svg '{node.id}'")
    return elem


_NODE_PAINTERS: Dict[str, Callable[[Any, Rect, Dict[str, Rect]], ET.Element]] = {
    "boundary": _emit_boundary,
    "group": _emit_group,
    "sprite": _emit_sprite,
    "shape": _emit_shape,
    "text": _emit_text,
    "raw-svg": _emit_raw_svg,
}


# ---------------------------------------------------------------------------
# Connectors and flows


def _emit_connector(
    connector: Connector, rects: Dict[str, Rect], ports: Dict[str, Port]
) -> Optional[ET.Element]:
    start = _endpoint_position(connector.source, rects, ports)
    end = _endpoint_position(connector.target, rects, ports)
    connector_id = connector.resolved_id()
    if start is None or end is None:
        logger.warning("skipping connector %s: unresolved endpoint", connector_id)
        return None

    group = ET.Element(_q("g"), {"class": "connector", "id": connector_id})
    path = ET.SubElement(group, _q("path"), {"d": _route_d(connector.route, start, end), "fill": "none"})
    if "stroke" not in connector.style:
        path.set("stroke", CONNECTOR_STROKE)
    _apply_style(path, connector.style)
    if connector.dashed:
        path.set("stroke-dasharray", "6 6")
    if connector.marker_end == "arrow":
        path.set("marker-end", f"url(#{ARROW_MARKER_ID})")
    if connector.label:
        label = ET.SubElement(
            group,
            _q("text"),
            {
                "x": _fmt((start[0] + end[0]) / 2),
                "y": _fmt((start[1] + end[1]) / 2 - 6),
                "font-size": "11",
                "fill": CONNECTOR_STROKE,
                "text-anchor": "middle",
            },
        )
        label.text = connector.label
    return group


def _emit_flow(
    flow: Flow,
    connectors: Dict[str, Connector],
    rects: Dict[str, Rect],
    ports: Dict[str, Port],
) -> Optional[ET.Element]:
    segments: List[str] = []
    length = 0.0
    for connector_id in flow.path:
        connector = connectors.get(connector_id)
        if connector is None:
            logger.warning("flow %s references unknown connector %s", flow.id, connector_id)
            continue
        start = _endpoint_position(connector.source, rects, ports)
        end = _endpoint_position(connector.target, rects, ports)
        if start is None or end is None:
            continue
        segments.append(_route_d(connector.route, start, end))
        length += _polyline_length(_route_points(connector.route, start, end))
    if not segments:
        logger.warning("skipping flow %s: no drawable connectors", flow.id)
        return None

    path_id = f"{flow.id}-path"
    group = ET.Element(_q("g"), {"class": "flow", "id": flow.id})
    ET.SubElement(group, _q("path"), {"id": path_id, "d": " ".join(segments), "fill": "none", "stroke": "none"})
    token = ET.SubElement(
        group,
        _q("circle"),
        {"r": _fmt(flow.token.size), "fill": flow.token.color, "class": "flow-token"},
    )
    motion = ET.SubElement(
        token,
        _q("animateMotion"),
        {
            "dur": f"{_fmt(length / flow.speed)}s",
            "repeatCount": "indefinite" if flow.loop else "1",
            "rotate": "auto",
        },
    )
    ET.SubElement(motion, _q("mpath"), {"href": f"#{path_id}"})
    return group


def _endpoint_position(
    endpoint: Endpoint, rects: Dict[str, Rect], ports: Dict[str, Port]
) -> Optional[Point2]:
    if endpoint.port_id is not None:
        port = ports.get(endpoint.port_id)
        if port is None or port.node_id not in rects:
            return None
        return port_position(port.side, port.offset, rects[port.node_id])
    rect = rects.get(endpoint.node_id or "")
    if rect is None:
        return None
    return rect.x + rect.w / 2, rect.y + rect.h / 2


def _route_d(route: str, start: Point2, end: Point2) -> str:
    (ax, ay), (bx, by) = start, end
    mx = (ax + bx) / 2
    if route == "orthogonal":
        return f"M {_fmt(ax)} {_fmt(ay)} L {_fmt(mx)} {_fmt(ay)} L {_fmt(mx)} {_fmt(by)} L {_fmt(bx)} {_fmt(by)}"
    if route == "curve":
        return f"M {_fmt(ax)} {_fmt(ay)} C {_fmt(mx)} {_fmt(ay)}, {_fmt(mx)} {_fmt(by)}, {_fmt(bx)} {_fmt(by)}"
    return f"M {_fmt(ax)} {_fmt(ay)} L {_fmt(bx)} {_fmt(by)}"


def _route_points(route: str, start: Point2, end: Point2) -> List[Point2]:
    (ax, ay), (bx, by) = start, end
    mx = (ax + bx) / 2
    if route == "orthogonal":
        return [start, (mx, ay), (mx, by), end]
    if route == "curve":
        points = []
        for step in range(CURVE_SAMPLES + 1):
            t = step / CURVE_SAMPLES
            u = 1 - t
            x = u ** 3 * ax + 3 * u * u * t * mx + 3 * u * t * t * mx + t ** 3 * bx
            y = u ** 3 * ay + 3 * u * u * t * ay + 3 * u * t * t * by + t ** 3 * by
            points.append((x, y))
        return points
    return [start, end]


def _polyline_length(points: List[Point2]) -> float:
    return sum(math.dist(a, b) for a, b in zip(points, points[1:]))


def _ensure_arrow_marker(defs: ET.Element) -> None:
    marker = ET.SubElement(
        defs,
        _q("marker"),
        {
            "id": ARROW_MARKER_ID,
            "viewBox": "0 0 10 10",
            "refX": "9",
            "refY": "5",
            "markerWidth": "7",
            "markerHeight": "7",
            "orient": "auto-start-reverse",
        },
    )
    ET.SubElement(marker, _q("path"), {"d": "M0 0 L10 5 L0 10Z", "fill": CONNECTOR_STROKE})


# ---------------------------------------------------------------------------
# Attribute helpers


def _z_sorted(nodes: List[Node]) -> List[Node]:
    return sorted(nodes, key=lambda node: node.z)


def _box_attrs(rect: Rect) -> Dict[str, str]:
    return {"x": _fmt(rect.x), "y": _fmt(rect.y), "width": _fmt(rect.w), "height": _fmt(rect.h)}


def _transform_attr(node: Node, rect: Rect) -> str:
    t = node.transform
    if t is None:
        return f"translate({_fmt(rect.x)} {_fmt(rect.y)})"
    parts = [f"translate({_fmt(rect.x + t.translate.x)} {_fmt(rect.y + t.translate.y)})"]
    if t.scale_x != 1 or t.scale_y != 1:
        parts.append(f"scale({_fmt(t.scale_x)} {_fmt(t.scale_y)})")
    if t.rotate:
        parts.append(f"rotate({_fmt(t.rotate)})")
    return " ".join(parts)


def _apply_style(elem: ET.Element, style: Dict[str, Any]) -> None:
    declarations = [
        f"{_camel_to_kebab(key)}:{value}"
        for key, value in style.items()
        if key not in ("className", "labelColor")
    ]
    if declarations:
        elem.set("style", ";".join(declarations))
    class_name = style.get("className")
    if class_name and elem.get("class") is None:
        elem.set("class", str(class_name))


def _with_class_name(base: str, style: Dict[str, Any]) -> str:
    class_name = style.get("className")
    return f"{base} {class_name}" if class_name else base


def _camel_to_kebab(name: str) -> str:
    return "".join(f"-{ch.lower()}" if ch.isupper() else ch for ch in name)


def _graft(parent: ET.Element, markup: str, where: str) -> None:
    """Parse an SVG fragment and append its content to ``parent``."""
    try:
        wrapper = ET.fromstring(f'<g xmlns="{SVG_NS}">{markup}</g>')
    except ET.ParseError as exc:
        raise SceneStructureError("E_RAW_SVG", f"malformed SVG markup in {where}: {exc}") from exc
    if wrapper.text and wrapper.text.strip():
        if len(parent):
            last = parent[-1]
            last.tail = (last.tail or "") + wrapper.text
        else:
            parent.text = (parent.text or "") + wrapper.text
    parent.extend(list(wrapper))


def _pretty_xml(element: ET.Element) -> str:
    ET.indent(element, space="  ")
    return ET.tostring(element, encoding="unicode")


def _q(tag: str) -> str:
    return f"{{{SVG_NS}}}{tag}"


__all__ = ["paint", "render_scene", "render_scene_with_diagnostics"]
