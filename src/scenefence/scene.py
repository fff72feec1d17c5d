"""Scene data model, JSON loading/dumping and structural validation."""
from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, ClassVar, Dict, Iterable, Iterator, List, Mapping, Optional, Set, Tuple

from .geometry import Rect

logger = logging.getLogger(__name__)

NODE_KINDS = ("boundary", "group", "sprite", "shape", "text", "raw-svg")
POLICY_MODES = ("strict", "loose")
OVERFLOW_TYPES = ("clip", "mask")
SNAP_ORIGINS = ("local", "canvas")
SHAPE_TYPES = ("rect", "roundedRect", "circle", "path")
TEXT_ANCHORS = ("center", "tl", "tr", "bl", "br", "l", "r", "t", "b")
PORT_SIDES = ("left", "right", "top", "bottom")
CONNECTOR_ROUTES = ("straight", "orthogonal", "curve")


class SceneStructureError(ValueError):
    """Raised for malformed scenes, with a stable code for CLI mapping."""

    def __init__(self, code: str, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.path = path

    def __str__(self) -> str:
        if self.path:
            return f"{self.path}: {self.message}"
        return self.message


@dataclass
class SceneIssue:
    """A malformed fragment skipped while loading a scene leniently."""

    code: str
    message: str
    path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "path": self.path}


@dataclass
class Point:
    x: float = 0
    y: float = 0

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y}


@dataclass
class Size:
    width: float = 0
    height: float = 0

    def to_dict(self) -> Dict[str, float]:
        return {"width": self.width, "height": self.height}


@dataclass(frozen=True)
class SnapSettings:
    grid: float = 2
    origin: str = "local"
    size: bool = False


@dataclass(frozen=True)
class BoundaryPolicy:
    mode: str = "strict"
    overflow: str = "clip"
    tolerance: float = 1
    snap: Optional[SnapSettings] = field(default_factory=SnapSettings)

    def to_dict(self) -> Dict[str, Any]:
        snap = None
        if self.snap is not None:
            snap = {"grid": self.snap.grid, "origin": self.snap.origin, "size": self.snap.size}
        return {
            "mode": self.mode,
            "overflow": self.overflow,
            "tolerance": self.tolerance,
            "snap": snap,
        }


def default_policy() -> BoundaryPolicy:
    """Policy applied to boundaries that declare none: strict, clip, tolerance 1, grid 2."""
    return BoundaryPolicy()


@dataclass
class Transform:
    translate: Point = field(default_factory=Point)
    scale_x: float = 1
    scale_y: float = 1
    rotate: float = 0


@dataclass
class Node:
    id: str
    at: Point = field(default_factory=Point)
    size: Optional[Size] = None
    z: float = 0
    style: Dict[str, Any] = field(default_factory=dict)
    transform: Optional[Transform] = None
    children: List["Node"] = field(default_factory=list)

    kind: ClassVar[str] = ""


@dataclass
class BoundaryNode(Node):
    title: Optional[str] = None
    policy: Optional[BoundaryPolicy] = None

    kind: ClassVar[str] = "boundary"

    def effective_policy(self) -> BoundaryPolicy:
        return self.policy if self.policy is not None else default_policy()


@dataclass
class GroupNode(Node):
    kind: ClassVar[str] = "group"


@dataclass
class SpriteRef:
    inline: Optional[str] = None
    symbol_id: Optional[str] = None
    view_box: Optional[Tuple[float, float, float, float]] = None


@dataclass
class SpriteNode(Node):
    sprite: SpriteRef = field(default_factory=SpriteRef)

    kind: ClassVar[str] = "sprite"


@dataclass
class ShapeNode(Node):
    shape: str = "rect"
    d: Optional[str] = None

    kind: ClassVar[str] = "shape"


@dataclass
class TextNode(Node):
    text: str = ""
    anchor: str = "tl"

    kind: ClassVar[str] = "text"


@dataclass
class RawSvgNode(Node):
    raw_svg: str = ""

    kind: ClassVar[str] = "raw-svg"


@dataclass
class Port:
    id: str
    node_id: str
    side: str
    offset: float = 0


@dataclass
class Endpoint:
    node_id: Optional[str] = None
    port_id: Optional[str] = None

    def label(self) -> str:
        return self.port_id if self.port_id is not None else (self.node_id or "")


@dataclass
class Connector:
    source: Endpoint
    target: Endpoint
    id: Optional[str] = None
    route: str = "straight"
    marker_end: str = "none"
    dashed: bool = False
    label: Optional[str] = None
    style: Dict[str, Any] = field(default_factory=dict)

    def resolved_id(self) -> str:
        return self.id or f"{self.source.label()}-{self.target.label()}"


@dataclass
class FlowToken:
    size: float = 4
    color: str = "#d6bcfa"


@dataclass
class Flow:
    id: str
    path: List[str]
    token: FlowToken = field(default_factory=FlowToken)
    speed: float = 160
    loop: bool = False


@dataclass
class Symbol:
    id: str
    svg: str


@dataclass
class SceneDefs:
    symbols: List[Symbol] = field(default_factory=list)
    filters: List[str] = field(default_factory=list)
    gradients: List[str] = field(default_factory=list)
    raw_svg: List[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.symbols or self.filters or self.gradients or self.raw_svg)


@dataclass
class Scene:
    id: str
    canvas: Size
    nodes: List[Node] = field(default_factory=list)
    bg: Optional[str] = None
    defs: SceneDefs = field(default_factory=SceneDefs)
    ports: List[Port] = field(default_factory=list)
    connectors: List[Connector] = field(default_factory=list)
    flows: List[Flow] = field(default_factory=list)


def iter_nodes(nodes: Iterable[Node]) -> Iterator[Node]:
    """Pre-order traversal. Assumes a validated (acyclic) tree."""
    for node in nodes:
        yield node
        yield from iter_nodes(node.children)


def find_node(scene: Scene, node_id: str) -> Optional[Node]:
    for node in iter_nodes(scene.nodes):
        if node.id == node_id:
            return node
    return None


# ---------------------------------------------------------------------------
# Validation of in-memory scenes


def validate_scene(scene: Scene) -> None:
    """Fail fast on structural problems; violations are not checked here."""
    _check_scene_root(scene)
    seen_objects: Set[int] = set()
    seen_ids: Set[str] = set()

    def _check(node: Any, path: str) -> None:
        _check_node(node, path, seen_objects, seen_ids)
        for index, child in enumerate(node.children):
            _check(child, f"{path}.children[{index}]")

    for index, node in enumerate(scene.nodes):
        _check(node, f"nodes[{index}]")
    for index, port in enumerate(scene.ports):
        _check_port(port, f"ports[{index}]")


def prune_invalid_nodes(scene: Scene, issues: List[SceneIssue]) -> Scene:
    """Copy of ``scene`` without the subtrees and ports that fail validation.

    Each dropped node (with everything under it) or port is recorded in
    ``issues``. For duplicate ids the first occurrence in pre-order is kept.
    Problems with the scene root (id, canvas, defs) still raise
    SceneStructureError, since nothing can be salvaged from them.
    """
    _check_scene_root(scene)
    seen_objects: Set[int] = set()
    seen_ids: Set[str] = set()

    def _skip(exc: SceneStructureError, path: str) -> None:
        logger.warning("dropping invalid entry at %s: %s", exc.path or path, exc.message)
        issues.append(SceneIssue(exc.code, exc.message, exc.path or path))

    def _keep(nodes: List[Node], path: str) -> List[Node]:
        kept: List[Node] = []
        for index, node in enumerate(nodes):
            node_path = f"{path}[{index}]"
            try:
                _check_node(node, node_path, seen_objects, seen_ids)
            except SceneStructureError as exc:
                _skip(exc, node_path)
                continue
            kept.append(replace(node, children=_keep(node.children, f"{node_path}.children")))
        return kept

    nodes = _keep(scene.nodes, "nodes")
    ports: List[Port] = []
    for index, port in enumerate(scene.ports):
        try:
            _check_port(port, f"ports[{index}]")
        except SceneStructureError as exc:
            _skip(exc, f"ports[{index}]")
            continue
        ports.append(port)
    return replace(scene, nodes=nodes, ports=ports)


def _check_scene_root(scene: Any) -> None:
    if not isinstance(scene, Scene):
        raise SceneStructureError("E_SCENE_FIELD", f"expected a Scene, got {type(scene).__name__}")
    if not isinstance(scene.id, str):
        raise SceneStructureError("E_SCENE_FIELD", "scene id must be a string", "id")
    canvas = scene.canvas
    if (
        not isinstance(canvas, Size)
        or not _is_finite_number(canvas.width)
        or not _is_finite_number(canvas.height)
        or canvas.width <= 0
        or canvas.height <= 0
    ):
        raise SceneStructureError("E_CANVAS", "canvas width and height must be positive numbers", "canvas")
    for name in ("nodes", "ports", "connectors", "flows"):
        if not isinstance(getattr(scene, name), list):
            raise SceneStructureError("E_SCENE_FIELD", f"{name} must be a list", name)
    defs = scene.defs
    if not isinstance(defs, SceneDefs):
        raise SceneStructureError("E_SCENE_FIELD", "defs must be a SceneDefs", "defs")
    for index, symbol in enumerate(defs.symbols):
        if not (isinstance(symbol, Symbol) and isinstance(symbol.id, str) and isinstance(symbol.svg, str)):
            raise SceneStructureError("E_SCENE_FIELD", "symbol needs a string id and svg", f"defs.symbols[{index}]")
    for name, items in (("filters", defs.filters), ("gradients", defs.gradients), ("rawSvg", defs.raw_svg)):
        for index, item in enumerate(items):
            if not isinstance(item, str):
                raise SceneStructureError("E_SCENE_FIELD", "expected an SVG markup string", f"defs.{name}[{index}]")


def _check_node(node: Any, path: str, seen_objects: Set[int], seen_ids: Set[str]) -> None:
    """Checks one node (not its children); marks it seen only when it passes."""
    if not isinstance(node, Node) or not node.kind:
        raise SceneStructureError("E_SCENE_FIELD", "expected a scene node", path)
    if id(node) in seen_objects:
        raise SceneStructureError(
            "E_SCENE_CYCLE", f"node '{node.id}' is reachable more than once", path
        )
    if not isinstance(node.id, str) or not node.id:
        raise SceneStructureError("E_SCENE_FIELD", "node id must be a non-empty string", path)
    if node.id in seen_ids:
        raise SceneStructureError("E_DUPLICATE_ID", f"duplicate node id '{node.id}'", path)
    if not isinstance(node.at, Point) or not (
        _is_finite_number(node.at.x) and _is_finite_number(node.at.y)
    ):
        raise SceneStructureError("E_GEOMETRY", f"node '{node.id}' has non-numeric position", path)
    if node.size is not None and not (
        isinstance(node.size, Size)
        and _is_finite_number(node.size.width)
        and _is_finite_number(node.size.height)
    ):
        raise SceneStructureError("E_GEOMETRY", f"node '{node.id}' has non-numeric size", path)
    if not isinstance(node.children, list):
        raise SceneStructureError("E_SCENE_FIELD", "children must be a list", f"{path}.children")
    _check_style(node.style, f"{path}.style")
    if isinstance(node, BoundaryNode):
        if node.size is None:
            raise SceneStructureError("E_SCENE_FIELD", f"boundary '{node.id}' requires a size", path)
        if node.policy is not None:
            _check_policy(node.policy, f"{path}.policy")
    elif isinstance(node, TextNode):
        if not isinstance(node.text, str):
            raise SceneStructureError("E_SCENE_FIELD", "text must be a string", f"{path}.text")
        if node.anchor not in TEXT_ANCHORS:
            raise SceneStructureError("E_SCENE_FIELD", f"unknown text anchor '{node.anchor}'", path)
    elif isinstance(node, ShapeNode) and node.shape not in SHAPE_TYPES:
        raise SceneStructureError("E_SCENE_FIELD", f"unknown shape '{node.shape}'", path)
    seen_objects.add(id(node))
    seen_ids.add(node.id)


def _check_style(style: Any, path: str) -> None:
    if not isinstance(style, Mapping):
        raise SceneStructureError("E_SCENE_FIELD", "style must be an object", path)
    if "fontFamily" in style and not isinstance(style["fontFamily"], str):
        raise SceneStructureError("E_SCENE_FIELD", "fontFamily must be a string", f"{path}.fontFamily")
    if "fontSize" in style:
        size = style["fontSize"]
        if not _is_finite_number(size) or size <= 0:
            raise SceneStructureError("E_SCENE_FIELD", "fontSize must be a positive number", f"{path}.fontSize")


def _check_port(port: Any, path: str) -> None:
    if not isinstance(port, Port):
        raise SceneStructureError("E_SCENE_FIELD", "expected a port", path)
    if not isinstance(port.id, str) or not isinstance(port.node_id, str):
        raise SceneStructureError("E_SCENE_FIELD", "port id and nodeId must be strings", path)
    if port.side not in PORT_SIDES:
        raise SceneStructureError("E_SCENE_FIELD", f"unknown port side '{port.side}'", f"{path}.side")
    if not _is_finite_number(port.offset):
        raise SceneStructureError("E_GEOMETRY", "port offset must be a number", f"{path}.offset")


def _check_policy(policy: Any, path: str) -> None:
    if not isinstance(policy, BoundaryPolicy):
        raise SceneStructureError("E_POLICY", "expected a boundary policy", path)
    if policy.snap is not None and not isinstance(policy.snap, SnapSettings):
        raise SceneStructureError("E_POLICY", "expected snap settings", f"{path}.snap")
    if policy.mode not in POLICY_MODES:
        raise SceneStructureError("E_POLICY", f"unknown policy mode '{policy.mode}'", path)
    if policy.overflow not in OVERFLOW_TYPES:
        raise SceneStructureError("E_POLICY", f"unknown overflow '{policy.overflow}'", path)
    if not _is_finite_number(policy.tolerance) or policy.tolerance < 0:
        raise SceneStructureError("E_POLICY", "tolerance must be a non-negative number", path)
    if policy.snap is not None:
        if not _is_finite_number(policy.snap.grid):
            raise SceneStructureError("E_POLICY", "snap grid must be a number", path)
        if policy.snap.origin not in SNAP_ORIGINS:
            raise SceneStructureError("E_POLICY", f"unknown snap origin '{policy.snap.origin}'", path)


def _is_finite_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


# ---------------------------------------------------------------------------
# JSON loading


def load_scene(text: str, issues: Optional[List[SceneIssue]] = None) -> Scene:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise SceneStructureError(
            "E_PARSE_JSON", f"failed to parse scene JSON at line {exc.lineno}, column {exc.colno}"
        ) from exc
    return scene_from_dict(data, issues=issues)


def scene_from_dict(data: Any, issues: Optional[List[SceneIssue]] = None) -> Scene:
    """Build a Scene from its JSON shape.

    With ``issues`` given, malformed nodes, ports, connectors and flows are
    skipped and recorded there instead of raising. Problems with the scene
    root itself always raise.
    """
    if not isinstance(data, Mapping):
        raise SceneStructureError("E_SCENE_FIELD", "scene must be a JSON object")
    scene_id = _require(data, "id", "")
    if not isinstance(scene_id, str):
        raise SceneStructureError("E_SCENE_FIELD", "scene id must be a string", "id")
    canvas = _size(_require(data, "canvas", ""), "canvas")
    nodes_data = data.get("nodes", [])
    if not isinstance(nodes_data, list):
        raise SceneStructureError("E_SCENE_FIELD", "nodes must be a list", "nodes")

    bg = data.get("bg")
    if bg is not None and not isinstance(bg, str):
        raise SceneStructureError("E_SCENE_FIELD", "bg must be a color string", "bg")

    scene = Scene(
        id=scene_id,
        canvas=canvas,
        nodes=_nodes(nodes_data, "nodes", issues),
        bg=bg,
        defs=_defs(data.get("defs"), "defs"),
        ports=_collect(data.get("ports"), "ports", _port, issues),
        connectors=_collect(data.get("connectors"), "connectors", _connector, issues),
        flows=_collect(data.get("flows"), "flows", _flow, issues),
    )
    return scene


def _require(data: Mapping[str, Any], key: str, path: str) -> Any:
    if key not in data or data[key] is None:
        where = f"{path}.{key}" if path else key
        raise SceneStructureError("E_SCENE_FIELD", f"missing required field '{key}'", where)
    return data[key]


def _number(value: Any, path: str) -> float:
    if not _is_finite_number(value):
        raise SceneStructureError("E_GEOMETRY", f"expected a number, got {value!r}", path)
    return value


def _mapping(value: Any, path: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise SceneStructureError("E_SCENE_FIELD", "expected an object", path)
    return value


def _point(value: Any, path: str) -> Point:
    value = _mapping(value, path)
    return Point(_number(value.get("x", 0), f"{path}.x"), _number(value.get("y", 0), f"{path}.y"))


def _size(value: Any, path: str) -> Size:
    value = _mapping(value, path)
    return Size(
        _number(_require(value, "width", path), f"{path}.width"),
        _number(_require(value, "height", path), f"{path}.height"),
    )


def _choice(value: Any, options: Tuple[str, ...], path: str, code: str = "E_SCENE_FIELD") -> str:
    if value not in options:
        raise SceneStructureError(code, f"expected one of {', '.join(options)}, got {value!r}", path)
    return value


def _policy(value: Any, path: str) -> BoundaryPolicy:
    value = _mapping(value, path)
    defaults = default_policy()
    mode = _choice(value.get("mode", defaults.mode), POLICY_MODES, f"{path}.mode", "E_POLICY")
    overflow = _choice(
        value.get("overflow", defaults.overflow), OVERFLOW_TYPES, f"{path}.overflow", "E_POLICY"
    )
    tolerance = _number(value.get("tolerance", defaults.tolerance), f"{path}.tolerance")
    if tolerance < 0:
        raise SceneStructureError("E_POLICY", "tolerance must be non-negative", f"{path}.tolerance")

    snap: Optional[SnapSettings] = defaults.snap
    if "snap" in value:
        raw_snap = value["snap"]
        if raw_snap is None:
            snap = None
        else:
            raw_snap = _mapping(raw_snap, f"{path}.snap")
            snap = SnapSettings(
                grid=_number(raw_snap.get("grid", SnapSettings.grid), f"{path}.snap.grid"),
                origin=_choice(
                    raw_snap.get("origin", SnapSettings.origin),
                    SNAP_ORIGINS,
                    f"{path}.snap.origin",
                    "E_POLICY",
                ),
                size=bool(raw_snap.get("size", False)),
            )
    return BoundaryPolicy(mode=mode, overflow=overflow, tolerance=tolerance, snap=snap)


def _transform(value: Any, path: str) -> Transform:
    value = _mapping(value, path)
    translate = _point(value["translate"], f"{path}.translate") if "translate" in value else Point()
    scale = value.get("scale", 1)
    if isinstance(scale, Mapping):
        scale_x = _number(scale.get("x", 1), f"{path}.scale.x")
        scale_y = _number(scale.get("y", 1), f"{path}.scale.y")
    else:
        scale_x = scale_y = _number(scale, f"{path}.scale")
    rotate = _number(value.get("rotate", 0), f"{path}.rotate")
    return Transform(translate=translate, scale_x=scale_x, scale_y=scale_y, rotate=rotate)


def _nodes(items: List[Any], path: str, issues: Optional[List[SceneIssue]]) -> List[Node]:
    nodes: List[Node] = []
    for index, item in enumerate(items):
        item_path = f"{path}[{index}]"
        try:
            nodes.append(_node(item, item_path, issues))
        except SceneStructureError as exc:
            if issues is None:
                raise
            logger.warning("skipping malformed node at %s: %s", exc.path or item_path, exc.message)
            issues.append(SceneIssue(exc.code, exc.message, exc.path or item_path))
    return nodes


def _node(data: Any, path: str, issues: Optional[List[SceneIssue]]) -> Node:
    data = _mapping(data, path)
    kind = _choice(_require(data, "kind", path), NODE_KINDS, f"{path}.kind")
    node_id = _require(data, "id", path)
    if not isinstance(node_id, str) or not node_id:
        raise SceneStructureError("E_SCENE_FIELD", "node id must be a non-empty string", f"{path}.id")

    if kind in ("boundary", "shape"):
        size: Optional[Size] = _size(_require(data, "size", path), f"{path}.size")
    else:
        size = _size(data["size"], f"{path}.size") if data.get("size") is not None else None
    if kind == "boundary":
        at = _point(_require(data, "at", path), f"{path}.at")
    else:
        at = _point(data["at"], f"{path}.at") if data.get("at") is not None else Point()

    style = data.get("style") or {}
    _check_style(style, f"{path}.style")
    common: Dict[str, Any] = {
        "id": node_id,
        "at": at,
        "size": size,
        "z": _number(data.get("z", 0), f"{path}.z"),
        "style": dict(style),
        "transform": _transform(data["transform"], f"{path}.transform") if data.get("transform") else None,
    }
    children_data = data.get("children") or []
    if not isinstance(children_data, list):
        raise SceneStructureError("E_SCENE_FIELD", "children must be a list", f"{path}.children")
    common["children"] = _nodes(children_data, f"{path}.children", issues)

    if kind == "boundary":
        title = _optional_str(data.get("title"), f"{path}.title")
        policy = _policy(data["policy"], f"{path}.policy") if data.get("policy") is not None else None
        return BoundaryNode(title=title, policy=policy, **common)
    if kind == "group":
        return GroupNode(**common)
    if kind == "sprite":
        sprite = _mapping(_require(data, "sprite", path), f"{path}.sprite")
        view_box = sprite.get("viewBox")
        if view_box is not None:
            view_box = _mapping(view_box, f"{path}.sprite.viewBox")
            view_box = tuple(
                _number(view_box.get(key, 0), f"{path}.sprite.viewBox.{key}") for key in ("x", "y", "w", "h")
            )
        ref = SpriteRef(
            inline=_markup(sprite["inline"], f"{path}.sprite.inline") if sprite.get("inline") is not None else None,
            symbol_id=_optional_str(sprite.get("symbolId"), f"{path}.sprite.symbolId"),
            view_box=view_box,
        )
        if ref.inline is None and ref.symbol_id is None:
            raise SceneStructureError("E_SCENE_FIELD", "sprite needs inline markup or a symbolId", f"{path}.sprite")
        return SpriteNode(sprite=ref, **common)
    if kind == "shape":
        shape = _choice(_require(data, "shape", path), SHAPE_TYPES, f"{path}.shape")
        return ShapeNode(shape=shape, d=_optional_str(data.get("d"), f"{path}.d"), **common)
    if kind == "text":
        text = _require(data, "text", path)
        anchor = _choice(data.get("anchor", "tl"), TEXT_ANCHORS, f"{path}.anchor")
        return TextNode(text=str(text), anchor=anchor, **common)
    raw = _require(data, "rawSvg", path)
    if not isinstance(raw, str):
        raise SceneStructureError("E_SCENE_FIELD", "rawSvg must be a string", f"{path}.rawSvg")
    return RawSvgNode(raw_svg=raw, **common)


def _collect(items: Any, path: str, build, issues: Optional[List[SceneIssue]]) -> list:
    if items is None:
        return []
    if not isinstance(items, list):
        raise SceneStructureError("E_SCENE_FIELD", f"{path} must be a list", path)
    out = []
    for index, item in enumerate(items):
        item_path = f"{path}[{index}]"
        try:
            out.append(build(item, item_path))
        except SceneStructureError as exc:
            if issues is None:
                raise
            logger.warning("skipping malformed entry at %s: %s", exc.path or item_path, exc.message)
            issues.append(SceneIssue(exc.code, exc.message, exc.path or item_path))
    return out


def _port(data: Any, path: str) -> Port:
    data = _mapping(data, path)
    return Port(
        id=str(_require(data, "id", path)),
        node_id=str(_require(data, "nodeId", path)),
        side=_choice(_require(data, "side", path), PORT_SIDES, f"{path}.side"),
        offset=_number(data.get("offset", 0), f"{path}.offset"),
    )


def _endpoint(value: Any, path: str) -> Endpoint:
    if isinstance(value, str):
        return Endpoint(node_id=value)
    value = _mapping(value, path)
    return Endpoint(port_id=str(_require(value, "port", path)))


def _connector(data: Any, path: str) -> Connector:
    data = _mapping(data, path)
    return Connector(
        source=_endpoint(_require(data, "from", path), f"{path}.from"),
        target=_endpoint(_require(data, "to", path), f"{path}.to"),
        id=_optional_str(data.get("id"), f"{path}.id"),
        route=_choice(data.get("route", "straight"), CONNECTOR_ROUTES, f"{path}.route"),
        marker_end=_choice(data.get("markerEnd", "none"), ("arrow", "none"), f"{path}.markerEnd"),
        dashed=bool(data.get("dashed", False)),
        label=_optional_str(data.get("label"), f"{path}.label"),
        style=dict(_mapping(data.get("style") or {}, f"{path}.style")),
    )


def _flow(data: Any, path: str) -> Flow:
    data = _mapping(data, path)
    raw_path = _require(data, "path", path)
    if not isinstance(raw_path, str):
        raise SceneStructureError("E_SCENE_FIELD", "flow path must be a string like 'c1>c2'", f"{path}.path")
    token_data = _mapping(data.get("token") or {}, f"{path}.token")
    token = FlowToken(
        size=_number(token_data.get("size", FlowToken.size), f"{path}.token.size"),
        color=str(token_data.get("color", FlowToken.color)),
    )
    speed = _number(data.get("speed", 160), f"{path}.speed")
    if speed <= 0:
        raise SceneStructureError("E_SCENE_FIELD", "flow speed must be positive", f"{path}.speed")
    return Flow(
        id=str(_require(data, "id", path)),
        path=[part.strip() for part in raw_path.split(">") if part.strip()],
        token=token,
        speed=speed,
        loop=bool(data.get("loop", False)),
    )


def _defs(data: Any, path: str) -> SceneDefs:
    if data is None:
        return SceneDefs()
    data = _mapping(data, path)
    symbols = []
    for index, item in enumerate(_list(data.get("symbols"), f"{path}.symbols")):
        item_path = f"{path}.symbols[{index}]"
        item = _mapping(item, item_path)
        symbols.append(
            Symbol(
                id=str(_require(item, "id", item_path)),
                svg=_markup(_require(item, "svg", item_path), f"{item_path}.svg"),
            )
        )
    return SceneDefs(
        symbols=symbols,
        filters=_markup_list(data.get("filters"), f"{path}.filters"),
        gradients=_markup_list(data.get("gradients"), f"{path}.gradients"),
        raw_svg=_markup_list(data.get("rawSvg"), f"{path}.rawSvg"),
    )


def _list(value: Any, path: str) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise SceneStructureError("E_SCENE_FIELD", "expected a list", path)
    return value


def _markup(value: Any, path: str) -> str:
    if not isinstance(value, str):
        raise SceneStructureError("E_SCENE_FIELD", "expected an SVG markup string", path)
    return value


def _optional_str(value: Any, path: str) -> Optional[str]:
    if value is not None and not isinstance(value, str):
        raise SceneStructureError("E_SCENE_FIELD", "expected a string", path)
    return value


def _markup_list(value: Any, path: str) -> List[str]:
    return [_markup(item, f"{path}[{index}]") for index, item in enumerate(_list(value, path))]


# ---------------------------------------------------------------------------
# JSON dumping


def scene_to_dict(scene: Scene, rects: Optional[Mapping[str, Rect]] = None) -> Dict[str, Any]:
    """Serialise a scene to its JSON shape, optionally annotating ``absRect`` per node."""
    out: Dict[str, Any] = {"id": scene.id, "canvas": scene.canvas.to_dict()}
    if scene.bg is not None:
        out["bg"] = scene.bg
    if not scene.defs.is_empty():
        out["defs"] = {
            "symbols": [{"id": sym.id, "svg": sym.svg} for sym in scene.defs.symbols],
            "filters": list(scene.defs.filters),
            "gradients": list(scene.defs.gradients),
            "rawSvg": list(scene.defs.raw_svg),
        }
    out["nodes"] = [node_to_dict(node, rects) for node in scene.nodes]
    if scene.ports:
        out["ports"] = [
            {"id": p.id, "nodeId": p.node_id, "side": p.side, "offset": p.offset} for p in scene.ports
        ]
    if scene.connectors:
        out["connectors"] = [_connector_to_dict(c) for c in scene.connectors]
    if scene.flows:
        out["flows"] = [
            {
                "id": f.id,
                "path": ">".join(f.path),
                "token": {"size": f.token.size, "color": f.token.color},
                "speed": f.speed,
                "loop": f.loop,
            }
            for f in scene.flows
        ]
    return out


def node_to_dict(node: Node, rects: Optional[Mapping[str, Rect]] = None) -> Dict[str, Any]:
    out: Dict[str, Any] = {"kind": node.kind, "id": node.id, "at": node.at.to_dict()}
    if node.size is not None:
        out["size"] = node.size.to_dict()
    if node.z:
        out["z"] = node.z
    if node.style:
        out["style"] = dict(node.style)
    if node.transform is not None:
        t = node.transform
        out["transform"] = {
            "translate": t.translate.to_dict(),
            "scale": {"x": t.scale_x, "y": t.scale_y},
            "rotate": t.rotate,
        }
    if isinstance(node, BoundaryNode):
        if node.title is not None:
            out["title"] = node.title
        if node.policy is not None:
            out["policy"] = node.policy.to_dict()
    elif isinstance(node, SpriteNode):
        sprite: Dict[str, Any] = {}
        if node.sprite.inline is not None:
            sprite["inline"] = node.sprite.inline
        if node.sprite.symbol_id is not None:
            sprite["symbolId"] = node.sprite.symbol_id
        if node.sprite.view_box is not None:
            sprite["viewBox"] = dict(zip(("x", "y", "w", "h"), node.sprite.view_box))
        out["sprite"] = sprite
    elif isinstance(node, ShapeNode):
        out["shape"] = node.shape
        if node.d is not None:
            out["d"] = node.d
    elif isinstance(node, TextNode):
        out["text"] = node.text
        out["anchor"] = node.anchor
    elif isinstance(node, RawSvgNode):
        out["rawSvg"] = node.raw_svg
    if node.children:
        out["children"] = [node_to_dict(child, rects) for child in node.children]
    if rects is not None and node.id in rects:
        out["absRect"] = rects[node.id].to_dict()
    return out


def _connector_to_dict(connector: Connector) -> Dict[str, Any]:
    def _end(end: Endpoint) -> Any:
        return {"port": end.port_id} if end.port_id is not None else end.node_id

    out: Dict[str, Any] = {
        "from": _end(connector.source),
        "to": _end(connector.target),
        "route": connector.route,
        "markerEnd": connector.marker_end,
        "dashed": connector.dashed,
    }
    if connector.id is not None:
        out["id"] = connector.id
    if connector.label is not None:
        out["label"] = connector.label
    if connector.style:
        out["style"] = dict(connector.style)
    return out


__all__ = [
    "BoundaryNode",
    "BoundaryPolicy",
    "Connector",
    "Endpoint",
    "Flow",
    "FlowToken",
    "GroupNode",
    "Node",
    "Point",
    "Port",
    "RawSvgNode",
    "Scene",
    "SceneDefs",
    "SceneIssue",
    "SceneStructureError",
    "ShapeNode",
    "Size",
    "SnapSettings",
    "SpriteNode",
    "SpriteRef",
    "Symbol",
    "TextNode",
    "Transform",
    "default_policy",
    "find_node",
    "iter_nodes",
    "load_scene",
    "node_to_dict",
    "prune_invalid_nodes",
    "scene_from_dict",
    "scene_to_dict",
    "validate_scene",
]
