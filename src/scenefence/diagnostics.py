"""Diagnostic reports and auto-fix suggestions built on top of enforcement."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Union

from .enforcement import Diagnostic, EnforcementResult, Summary, enforce_boundaries
from .scene import (
    Node,
    Point,
    Scene,
    SceneIssue,
    SceneStructureError,
    prune_invalid_nodes,
    scene_from_dict,
)

logger = logging.getLogger(__name__)

MOVE_NODE = "MOVE_NODE"
CONFIDENCE_HIGH = "high"
CONFIDENCE_LOW = "low"
_CONFIDENCE_RANK = {CONFIDENCE_LOW: 0, CONFIDENCE_HIGH: 1}


@dataclass
class Suggestion:
    type: str
    node_id: str
    description: str
    at: Point
    confidence: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "nodeId": self.node_id,
            "description": self.description,
            "changes": {"at": self.at.to_dict()},
            "confidence": self.confidence,
        }


@dataclass
class DiagnosticReport:
    scene_id: str
    timestamp: str
    summary: Summary
    diagnostics: List[Diagnostic] = field(default_factory=list)
    suggestions: List[Suggestion] = field(default_factory=list)
    issues: List[SceneIssue] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sceneId": self.scene_id,
            "timestamp": self.timestamp,
            "summary": self.summary.to_dict(),
            "diagnostics": [d.to_dict() for d in self.diagnostics],
            "suggestions": [s.to_dict() for s in self.suggestions],
            "issues": [i.to_dict() for i in self.issues],
        }


def generate_diagnostic_report(scene: Union[Scene, Mapping[str, Any]]) -> DiagnosticReport:
    """Best-effort report for a scene or its raw JSON mapping.

    Never raises for bad input. Malformed nodes (in a mapping or an in-memory
    scene) are dropped together with their subtree and listed in ``issues``;
    the rest of the tree is still enforced. A scene whose root is unusable
    produces an empty report carrying the structural problem.
    """
    timestamp = datetime.now(timezone.utc).isoformat()
    issues: List[SceneIssue] = []

    try:
        loaded = scene if isinstance(scene, Scene) else scene_from_dict(scene, issues=issues)
        result = enforce_boundaries(prune_invalid_nodes(loaded, issues))
    except SceneStructureError as exc:
        logger.warning("cannot build diagnostics for scene %r: %s", _raw_scene_id(scene), exc)
        issues.append(SceneIssue(exc.code, exc.message, exc.path))
        return DiagnosticReport(_raw_scene_id(scene), timestamp, Summary(), issues=issues)

    report = report_from_result(result)
    report.timestamp = timestamp
    report.issues = issues
    return report


def report_from_result(result: EnforcementResult) -> DiagnosticReport:
    """Report for an enforcement pass the caller already ran."""
    return DiagnosticReport(
        scene_id=result.scene.id,
        timestamp=datetime.now(timezone.utc).isoformat(),
        summary=result.summary,
        diagnostics=list(result.diagnostics),
        suggestions=generate_auto_fix_suggestions(result),
    )


def _raw_scene_id(scene: Any) -> str:
    if isinstance(scene, Scene) and isinstance(scene.id, str):
        return scene.id
    if isinstance(scene, Mapping) and isinstance(scene.get("id"), str):
        return scene["id"]
    return ""


def generate_auto_fix_suggestions(result: EnforcementResult) -> List[Suggestion]:
    suggestions: List[Suggestion] = []
    for diagnostic in result.diagnostics:
        fix = diagnostic.suggested_fix
        if fix is None:
            continue
        confidence = CONFIDENCE_HIGH if fix.resolves else CONFIDENCE_LOW
        suggestions.append(
            Suggestion(
                type=MOVE_NODE,
                node_id=diagnostic.node_id,
                description=(
                    f"Move node '{diagnostic.node_id}' to stay within boundary '{diagnostic.boundary_id}'"
                ),
                at=fix.at,
                confidence=confidence,
            )
        )
    return suggestions


def apply_auto_fixes(
    scene: Scene, suggestions: List[Suggestion], min_confidence: str = CONFIDENCE_HIGH
) -> Scene:
    """Return a copy of ``scene`` with the qualifying suggestions applied."""
    if min_confidence not in _CONFIDENCE_RANK:
        raise ValueError(f"unknown confidence level: {min_confidence}")
    threshold = _CONFIDENCE_RANK[min_confidence]
    moves: Dict[str, Point] = {}
    for suggestion in suggestions:
        if suggestion.type != MOVE_NODE:
            continue
        if _CONFIDENCE_RANK.get(suggestion.confidence, -1) < threshold:
            continue
        moves[suggestion.node_id] = Point(suggestion.at.x, suggestion.at.y)

    def _rebuild(node: Node) -> Node:
        at = moves.get(node.id, Point(node.at.x, node.at.y))
        return replace(node, at=at, children=[_rebuild(child) for child in node.children])

    return replace(scene, nodes=[_rebuild(node) for node in scene.nodes])


def export_diagnostic_report(report: DiagnosticReport) -> str:
    return json.dumps(report.to_dict(), indent=2)


def format_diagnostic_summary(report: DiagnosticReport) -> str:
    summary = report.summary
    lines = [
        f"Boundary enforcement report for '{report.scene_id}'",
        f"Summary: {summary.errors} errors, {summary.warnings} warnings",
        f"Processed: {summary.total_nodes} nodes, {summary.boundaries_processed} boundaries",
    ]
    if report.diagnostics:
        lines.append("")
        lines.append("Issues found:")
        for index, diag in enumerate(report.diagnostics, start=1):
            lines.append(f"  {index}. [{diag.severity.upper()}] {diag.code}: {diag.message}")
    if report.suggestions:
        lines.append("")
        lines.append("Auto-fix suggestions:")
        for index, suggestion in enumerate(report.suggestions, start=1):
            lines.append(
                f"  {index}. [{suggestion.confidence.upper()}] {suggestion.description}"
                f" -> at ({suggestion.at.x}, {suggestion.at.y})"
            )
    if report.issues:
        lines.append("")
        lines.append("Skipped input:")
        for issue in report.issues:
            where = f" ({issue.path})" if issue.path else ""
            lines.append(f"  - {issue.code}: {issue.message}{where}")
    if not report.diagnostics and not report.issues:
        lines.append("")
        lines.append("No boundary violations detected.")
    return "\n".join(lines) + "\n"


__all__ = [
    "CONFIDENCE_HIGH",
    "CONFIDENCE_LOW",
    "DiagnosticReport",
    "MOVE_NODE",
    "Suggestion",
    "apply_auto_fixes",
    "export_diagnostic_report",
    "format_diagnostic_summary",
    "generate_auto_fix_suggestions",
    "generate_diagnostic_report",
    "report_from_result",
]
