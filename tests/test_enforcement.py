from __future__ import annotations

import copy
import sys
import unittest
from pathlib import Path

TESTS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = TESTS_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from scenefence.enforcement import NEG_SIZE, OUT_OF_BOUNDS, PORT_OUTSIDE, enforce_boundaries
from scenefence.geometry import Rect
from scenefence.scene import (
    BoundaryNode,
    Point,
    Scene,
    SceneStructureError,
    ShapeNode,
    Size,
    scene_from_dict,
    scene_to_dict,
)


def _shape(node_id: str, x: float, y: float, w: float = 20, h: float = 20, **extra) -> dict:
    node = {"kind": "shape", "id": node_id, "shape": "rect", "at": {"x": x, "y": y}, "size": {"width": w, "height": h}}
    node.update(extra)
    return node


def _boundary(node_id: str, x: float, y: float, w: float, h: float, children: list, policy=None) -> dict:
    node = {
        "kind": "boundary",
        "id": node_id,
        "at": {"x": x, "y": y},
        "size": {"width": w, "height": h},
        "children": children,
    }
    if policy is not None:
        node["policy"] = policy
    return node


def _scene(*nodes: dict) -> dict:
    return {"id": "test-scene", "canvas": {"width": 800, "height": 600}, "nodes": list(nodes)}


STRICT_EXACT = {"mode": "strict", "overflow": "clip", "tolerance": 0, "snap": {"grid": 2}}


class EnforceBoundariesTests(unittest.TestCase):
    def test_detects_out_of_bounds_child(self) -> None:
        scene = scene_from_dict(
            _scene(_boundary("test-boundary", 50, 50, 200, 150, [_shape("child", 180, 120, 50, 50)], STRICT_EXACT))
        )
        result = enforce_boundaries(scene)

        self.assertEqual(len(result.diagnostics), 1)
        diag = result.diagnostics[0]
        self.assertEqual(diag.code, OUT_OF_BOUNDS)
        self.assertEqual(diag.node_id, "child")
        self.assertEqual(diag.boundary_id, "test-boundary")
        self.assertEqual(diag.severity, "error")
        self.assertEqual(diag.suggested_fix.at, Point(150, 100))
        self.assertEqual(diag.suggested_fix.rect, Rect(200, 150, 50, 50))
        self.assertTrue(diag.suggested_fix.resolves)
        self.assertEqual(result.summary.errors, 1)
        self.assertEqual(result.summary.warnings, 0)

    def test_snaps_children_to_grid(self) -> None:
        policy = {"mode": "strict", "overflow": "clip", "tolerance": 0, "snap": {"grid": 10}}
        scene = scene_from_dict(
            _scene(_boundary("test-boundary", 0, 0, 200, 200, [_shape("child", 23, 37)], policy))
        )
        result = enforce_boundaries(scene)
        self.assertEqual(result.absolute_rect_of("child"), Rect(20, 40, 20, 20))
        self.assertEqual(result.diagnostics, [])

    def test_snap_is_relative_to_boundary_by_default(self) -> None:
        policy = {"tolerance": 0, "snap": {"grid": 10}}
        scene = scene_from_dict(_scene(_boundary("b", 5, 5, 200, 200, [_shape("child", 13, 13)], policy)))
        self.assertEqual(enforce_boundaries(scene).rects["child"], Rect(15, 15, 20, 20))

    def test_canvas_snap_origin(self) -> None:
        policy = {"tolerance": 0, "snap": {"grid": 10, "origin": "canvas"}}
        scene = scene_from_dict(_scene(_boundary("b", 5, 5, 200, 200, [_shape("child", 13, 13)], policy)))
        self.assertEqual(enforce_boundaries(scene).rects["child"], Rect(20, 20, 20, 20))

    def test_snap_size_option(self) -> None:
        policy = {"tolerance": 0, "snap": {"grid": 10, "size": True}}
        scene = scene_from_dict(_scene(_boundary("b", 0, 0, 200, 200, [_shape("child", 10, 10, 24, 36)], policy)))
        self.assertEqual(enforce_boundaries(scene).rects["child"], Rect(10, 10, 20, 40))

    def test_disabled_snap_keeps_fractional_positions(self) -> None:
        policy = {"tolerance": 0, "snap": None}
        scene = scene_from_dict(_scene(_boundary("b", 0, 0, 200, 200, [_shape("child", 13.5, 7.25)], policy)))
        self.assertEqual(enforce_boundaries(scene).rects["child"], Rect(13.5, 7.25, 20, 20))

    def test_loose_mode_reports_warnings(self) -> None:
        policy = {"mode": "loose", "overflow": "clip", "tolerance": 0, "snap": {"grid": 2}}
        scene = scene_from_dict(_scene(_boundary("b", 0, 0, 100, 100, [_shape("child", 90, 90)], policy)))
        result = enforce_boundaries(scene)
        self.assertEqual([d.severity for d in result.diagnostics], ["warning"])
        self.assertEqual(result.summary.errors, 0)
        self.assertEqual(result.summary.warnings, 1)

    def test_strict_and_loose_differ_only_in_severity(self) -> None:
        def _run(mode: str):
            policy = {"mode": mode, "tolerance": 0}
            children = [_shape("a", 90, 0), _shape("b", 10, 10), _shape("c", -10, 50)]
            return enforce_boundaries(scene_from_dict(_scene(_boundary("b0", 0, 0, 100, 100, children, policy))))

        strict, loose = _run("strict"), _run("loose")
        self.assertEqual(
            [(d.code, d.node_id, d.suggested_fix) for d in strict.diagnostics],
            [(d.code, d.node_id, d.suggested_fix) for d in loose.diagnostics],
        )
        self.assertEqual({d.severity for d in strict.diagnostics}, {"error"})
        self.assertEqual({d.severity for d in loose.diagnostics}, {"warning"})

    def test_summary_counts_every_node(self) -> None:
        scene = scene_from_dict(
            _scene(_boundary("test-boundary", 0, 0, 200, 200, [_shape("child1", 10, 10), _shape("child2", 50, 50)]))
        )
        summary = enforce_boundaries(scene).summary
        self.assertEqual(summary.total_nodes, 3)
        self.assertEqual(summary.boundaries_processed, 1)
        self.assertEqual(summary.errors + summary.warnings, 0)

    def test_missing_policy_matches_explicit_default(self) -> None:
        default = {"mode": "strict", "overflow": "clip", "tolerance": 1, "snap": {"grid": 2}}
        children = [_shape("inside", 10, 10), _shape("edge", 180, 10, 21, 20),_shape("out", 195, 10)]
        implicit = enforce_boundaries(scene_from_dict(_scene(_boundary("b", 0, 0, 200, 200, children))))
        explicit = enforce_boundaries(scene_from_dict(_scene(_boundary("b", 0, 0, 200, 200, copy.deepcopy(children), default))))
        self.assertEqual(
            [d.to_dict() for d in implicit.diagnostics],
            [d.to_dict() for d in explicit.diagnostics],
        )
        self.assertEqual(implicit.rects, explicit.rects)
        self.assertEqual([d.node_id for d in implicit.diagnostics], ["out"])

    def test_tolerance_allows_small_overflow(self) -> None:
        children = [_shape("child", 84, 10)]
        tight = {"tolerance": 0}
        loose_tol = {"tolerance": 4}
        self.assertEqual(
            len(enforce_boundaries(scene_from_dict(_scene(_boundary("b", 0, 0, 100, 100, children, tight)))).diagnostics),
            1,
        )
        self.assertEqual(
            len(enforce_boundaries(scene_from_dict(_scene(_boundary("b", 0, 0, 100, 100, children, loose_tol)))).diagnostics),
            0,
        )

    def test_no_false_positives_for_contained_children(self) -> None:
        children = [_shape(f"n{i}", i * 20, i * 10, 20, 20) for i in range(5)]
        result = enforce_boundaries(scene_from_dict(_scene(_boundary("b", 40, 40, 200, 200, children, STRICT_EXACT))))
        self.assertEqual(result.diagnostics, [])

    def test_oversized_child_fix_does_not_resolve(self) -> None:
        scene = scene_from_dict(_scene(_boundary("b", 0, 0, 100, 100, [_shape("wide", 20, 10, 150, 20)], STRICT_EXACT)))
        diag = enforce_boundaries(scene).diagnostics[0]
        self.assertEqual(diag.code, OUT_OF_BOUNDS)
        self.assertFalse(diag.suggested_fix.resolves)
        self.assertEqual(diag.suggested_fix.at, Point(0, 10))

    def test_negative_size_is_reported_without_fix(self) -> None:
        scene = Scene(
            "neg",
            Size(400, 400),
            nodes=[
                BoundaryNode(
                    id="b",
                    at=Point(0, 0),
                    size=Size(100, 100),
                    children=[ShapeNode(id="bad", at=Point(10, 10), size=Size(-5, 10))],
                )
            ],
        )
        diag = enforce_boundaries(scene).diagnostics[0]
        self.assertEqual(diag.code, NEG_SIZE)
        self.assertIsNone(diag.suggested_fix)

    def test_nested_boundaries_use_their_own_frame(self) -> None:
        inner = _boundary("inner", 10, 10, 100, 100, [_shape("deep", 90, 90)], STRICT_EXACT)
        outer = _boundary("outer", 0, 0, 300, 300, [inner], STRICT_EXACT)
        result = enforce_boundaries(scene_from_dict(_scene(outer)))
        self.assertEqual(result.summary.boundaries_processed, 2)
        self.assertEqual(len(result.diagnostics), 1)
        self.assertEqual(result.diagnostics[0].node_id, "deep")
        self.assertEqual(result.diagnostics[0].boundary_id, "inner")
        self.assertEqual(result.rects["deep"], Rect(100, 100, 20, 20))

    def test_grandchildren_under_group_are_not_checked(self) -> None:
        group = {"kind": "group", "id": "g", "at": {"x": 10, "y": 10}, "children": [_shape("far", 200, 200, 10, 10)]}
        result = enforce_boundaries(scene_from_dict(_scene(_boundary("b", 0, 0, 100, 100, [group], STRICT_EXACT))))
        self.assertEqual(result.diagnostics, [])
        self.assertEqual(result.rects["far"], Rect(210, 210, 10, 10))
        self.assertEqual(result.rects["g"], Rect(10, 10, 0, 0))

    def test_snapped_position_is_origin_for_descendants(self) -> None:
        policy = {"tolerance": 0, "snap": {"grid": 10}}
        group = {"kind": "group", "id": "g", "at": {"x": 23, "y": 37}, "children": [_shape("leaf", 1, 1)]}
        result = enforce_boundaries(scene_from_dict(_scene(_boundary("b", 0, 0, 200, 200, [group], policy))))
        self.assertEqual(result.rects["g"], Rect(20, 40, 0, 0))
        self.assertEqual(result.rects["leaf"], Rect(21, 41, 20, 20))

    def test_top_level_nodes_are_unchecked(self) -> None:
        result = enforce_boundaries(scene_from_dict(_scene(_shape("stray", 5000, 5000))))
        self.assertEqual(result.diagnostics, [])
        self.assertEqual(result.rects["stray"], Rect(5000, 5000, 20, 20))

    def test_text_without_size_is_measured(self) -> None:
        text = {"kind": "text", "id": "label", "text": "Hello", "at": {"x": 4, "y": 4}}
        result = enforce_boundaries(scene_from_dict(_scene(_boundary("b", 0, 0, 400, 200, [text]))))
        rect = result.rects["label"]
        self.assertGreater(rect.w, 0)
        self.assertGreater(rect.h, 0)

    def test_input_scene_is_not_mutated(self) -> None:
        data = _scene(_boundary("b", 0, 0, 100, 100, [_shape("out", 95, 95), _shape("odd", 3, 7)], STRICT_EXACT))
        scene = scene_from_dict(data)
        before = scene_to_dict(scene)
        first = enforce_boundaries(scene)
        self.assertEqual(scene_to_dict(scene), before)
        second = enforce_boundaries(scene)
        self.assertEqual([d.to_dict() for d in first.diagnostics], [d.to_dict() for d in second.diagnostics])
        self.assertEqual(first.rects, second.rects)

    def test_result_dict_annotates_absolute_rects(self) -> None:
        scene = scene_from_dict(_scene(_boundary("b", 50, 50, 200, 150, [_shape("child", 180, 120, 50, 50)], STRICT_EXACT)))
        payload = enforce_boundaries(scene).to_dict()
        child = payload["scene"]["nodes"][0]["children"][0]
        self.assertEqual(child["absRect"], {"x": 230, "y": 170, "w": 50, "h": 50})
        self.assertEqual(payload["diagnostics"][0]["suggestedFix"]["at"], {"x": 150, "y": 100})
        self.assertEqual(payload["summary"]["boundariesProcessed"], 1)

    def test_structural_errors_raise(self) -> None:
        scene = Scene("bad", Size(100, 100), nodes=[BoundaryNode(id="b", at=Point(0, 0))])
        with self.assertRaises(SceneStructureError) as ctx:
            enforce_boundaries(scene)
        self.assertEqual(ctx.exception.code, "E_SCENE_FIELD")

    def test_empty_scene(self) -> None:
        result = enforce_boundaries(Scene("empty", Size(10, 10)))
        self.assertEqual(result.diagnostics, [])
        self.assertEqual(result.summary.total_nodes, 0)

    def test_canvas_snapped_fix_lands_on_grid_inside(self) -> None:
        policy = {"mode": "strict", "tolerance": 0, "snap": {"grid": 10, "origin": "canvas"}}
        scene = scene_from_dict(_scene(_boundary("b", 5, 5, 100, 100, [_shape("child", 90, 10)], policy)))
        result = enforce_boundaries(scene)
        self.assertEqual(result.rects["child"], Rect(100, 20, 20, 20))
        fix = result.diagnostics[0].suggested_fix
        self.assertEqual(fix.at, Point(75, 15))
        self.assertEqual(fix.rect, Rect(80, 20, 20, 20))
        self.assertTrue(fix.resolves)

    def test_fix_without_grid_room_does_not_resolve(self) -> None:
        policy = {"mode": "strict", "tolerance": 0, "snap": {"grid": 10, "origin": "canvas"}}
        scene = scene_from_dict(_scene(_boundary("b", 5, 5, 100, 100, [_shape("wide", 10, 5, 98, 20)], policy)))
        diag = enforce_boundaries(scene).diagnostics[0]
        self.assertEqual(diag.code, OUT_OF_BOUNDS)
        self.assertFalse(diag.suggested_fix.resolves)

    def test_local_snapped_fix_stays_on_grid(self) -> None:
        policy = {"mode": "strict", "tolerance": 0, "snap": {"grid": 10}}
        scene = scene_from_dict(_scene(_boundary("b", 0, 0, 100, 100, [_shape("child", 90, 0, 25, 20)], policy)))
        fix = enforce_boundaries(scene).diagnostics[0].suggested_fix
        self.assertEqual(fix.at, Point(70, 0))
        self.assertTrue(fix.resolves)


class PortContainmentTests(unittest.TestCase):
    def _run(self, policy: dict, port: dict, host_at=(60, 10)):
        data = _scene(_boundary("b", 0, 0, 100, 100, [_shape("host", *host_at)], policy))
        data["ports"] = [dict({"id": "p", "nodeId": "host"}, **port)]
        return enforce_boundaries(scene_from_dict(data))

    def test_port_inside_boundary_is_clean(self) -> None:
        result = self._run(STRICT_EXACT, {"side": "right", "offset": 10})
        self.assertEqual(result.diagnostics, [])

    def test_port_outside_boundary_is_an_error(self) -> None:
        result = self._run(STRICT_EXACT, {"side": "right", "offset": 200})
        self.assertEqual([d.code for d in result.diagnostics], [PORT_OUTSIDE])
        diag = result.diagnostics[0]
        self.assertEqual(diag.node_id, "host")
        self.assertEqual(diag.boundary_id, "b")
        self.assertEqual(diag.severity, "error")
        self.assertEqual(diag.actual["position"], {"x": 80, "y": 210})
        self.assertIsNone(diag.suggested_fix)
        self.assertEqual(result.summary.errors, 1)

    def test_tolerance_applies_to_ports(self) -> None:
        port = {"side": "left", "offset": -3}
        lenient = self._run({"tolerance": 4, "snap": None}, port, host_at=(0, 0))
        exact = self._run({"tolerance": 0, "snap": None}, port, host_at=(0, 0))
        self.assertEqual(lenient.diagnostics, [])
        self.assertEqual([d.code for d in exact.diagnostics], [PORT_OUTSIDE])

    def test_loose_boundary_reports_port_warning(self) -> None:
        result = self._run({"mode": "loose", "tolerance": 0}, {"side": "bottom", "offset": 500})
        self.assertEqual([d.severity for d in result.diagnostics], ["warning"])
        self.assertEqual(result.summary.warnings, 1)

    def test_ports_outside_any_boundary_are_ignored(self) -> None:
        group = {"kind": "group", "id": "g", "children": [_shape("nested", 0, 0)]}
        data = _scene(_shape("stray", 0, 0), _boundary("b", 0, 0, 100, 100, [group], STRICT_EXACT))
        data["ports"] = [
            {"id": "p1", "nodeId": "stray", "side": "right", "offset": 1000},
            {"id": "p2", "nodeId": "nested", "side": "top", "offset": 1000},
        ]
        self.assertEqual(enforce_boundaries(scene_from_dict(data)).diagnostics, [])


if __name__ == "__main__":
    unittest.main()
