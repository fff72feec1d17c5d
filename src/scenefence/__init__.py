"""Public API for scenefence."""
from .containment import (
    ClipDefinition,
    ContainmentContext,
    collect_containment_requirements,
    generate_clip_path,
    needs_containment,
)
from .diagnostics import (
    DiagnosticReport,
    Suggestion,
    apply_auto_fixes,
    generate_auto_fix_suggestions,
    generate_diagnostic_report,
)
from .enforcement import Diagnostic, EnforcementResult, Summary, enforce_boundaries
from .geometry import Rect, clamp_to, contains, snap
from .render import render_scene, render_scene_with_diagnostics
from .scene import (
    BoundaryNode,
    BoundaryPolicy,
    GroupNode,
    RawSvgNode,
    Scene,
    SceneStructureError,
    ShapeNode,
    SpriteNode,
    TextNode,
    default_policy,
    load_scene,
    scene_from_dict,
)

__all__ = [
    "BoundaryNode",
    "BoundaryPolicy",
    "ClipDefinition",
    "ContainmentContext",
    "Diagnostic",
    "DiagnosticReport",
    "EnforcementResult",
    "GroupNode",
    "RawSvgNode",
    "Rect",
    "Scene",
    "SceneStructureError",
    "ShapeNode",
    "SpriteNode",
    "Suggestion",
    "Summary",
    "TextNode",
    "apply_auto_fixes",
    "clamp_to",
    "collect_containment_requirements",
    "contains",
    "default_policy",
    "enforce_boundaries",
    "generate_auto_fix_suggestions",
    "generate_clip_path",
    "generate_diagnostic_report",
    "load_scene",
    "needs_containment",
    "render_scene",
    "render_scene_with_diagnostics",
    "scene_from_dict",
    "snap",
]
