from __future__ import annotations

import json
import sys
import unittest
from pathlib import Path

TESTS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = TESTS_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from umlayout import hierarchy_layout, timeline_layout
from umlayout.errors import ModelError
from umlayout.hierarchy import ComponentKind, Direction, HierarchyModel
from umlayout.serialize import layout_to_dict, model_from_dict, parse_message_arrow
from umlayout.timeline import ArrowHead, LineStyle, TimelineModel


def _timeline(*operations):
    return model_from_dict({"type": "timeline", "operations": list(operations)})


def _msg(source, target, **extra):
    op = {"op": "message", "from": source, "to": target}
    op.update(extra)
    return op


class MessageArrowTests(unittest.TestCase):
    def test_arrow_parts(self) -> None:
        parts = parse_message_arrow("-->>")
        self.assertEqual((parts.style, parts.head), (LineStyle.DOTTED, ArrowHead.OPEN))

        parts = parse_message_arrow("<->")
        self.assertTrue(parts.bidirectional)
        self.assertEqual(parts.start_head, ArrowHead.DEFAULT)

        parts = parse_message_arrow("->x")
        self.assertEqual(parts.head, ArrowHead.LOST)
        self.assertFalse(parts.bidirectional)

    def test_bad_arrow(self) -> None:
        with self.assertRaises(ModelError):
            parse_message_arrow("=>")


class TimelineReplayTests(unittest.TestCase):
    def test_dispatch_on_type(self) -> None:
        self.assertIsInstance(_timeline(), TimelineModel)
        self.assertIsInstance(model_from_dict({"type": "hierarchy"}), HierarchyModel)

    def test_rejects_unknown_type_and_non_objects(self) -> None:
        for payload in ({"type": "flowchart"}, {}, [1, 2], "text"):
            with self.subTest(payload=payload):
                with self.assertRaises(ModelError) as ctx:
                    model_from_dict(payload)
                self.assertEqual(ctx.exception.code, "E_MODEL")

    def test_unknown_op_names_its_position(self) -> None:
        with self.assertRaises(ModelError) as ctx:
            _timeline({"op": "participant", "name": "A"}, {"op": "teleport"})
        self.assertIn("operation 1", ctx.exception.message)

    def test_bad_enum_lists_choices(self) -> None:
        with self.assertRaises(ModelError) as ctx:
            _timeline({"op": "participant", "name": "A", "kind": "robot"})
        self.assertIn("actor", ctx.exception.message)

    def test_activation_shorthands(self) -> None:
        model = _timeline(
            _msg("A", "B", shorthand="++"),
            _msg("B", "C", shorthand="++"),
            _msg("C", "B", arrow="-->", shorthand="--"),
        )
        b, c = model.activations
        self.assertEqual((b.participant, b.start_step, b.source_step, b.end_step), ("B", 0, 0, None))
        self.assertEqual((c.participant, c.start_step, c.end_step, c.end_source_step), ("C", 1, 2, 2))

    def test_create_and_destroy_shorthands(self) -> None:
        model = _timeline(_msg("A", "B", shorthand="**"), _msg("A", "B", shorthand="!!"))
        b = model.participant("B")
        self.assertEqual((b.created_step, b.destroyed_step), (0, 1))

    def test_found_message(self) -> None:
        model = _timeline(_msg("x", "A", text="ping"))
        self.assertEqual(model.messages[0].start_head, ArrowHead.FOUND)

    def test_activate_aligns_with_last_message(self) -> None:
        model = _timeline(_msg("A", "B"), {"op": "activate", "name": "B"}, {"op": "activate", "name": "C"})
        aligned, standalone = model.activations
        self.assertEqual((aligned.start_step, aligned.source_step), (0, 0))
        self.assertEqual((standalone.start_step, standalone.source_step), (1, None))

    def test_deactivate_after_reply_aligns_with_reply(self) -> None:
        model = _timeline(
            _msg("A", "B"),
            {"op": "activate", "name": "B"},
            _msg("B", "A", arrow="-->"),
            {"op": "deactivate", "name": "B"},
        )
        self.assertEqual(model.activations[0].end_step, 1)
        self.assertEqual(len(model.messages), 2)

    def test_deactivate_of_receiver_after_dotted_message_takes_new_step(self) -> None:
        model = _timeline(
            {"op": "activate", "name": "A"},
            _msg("B", "A", arrow="-->"),
            {"op": "deactivate", "name": "A"},
        )
        self.assertEqual(model.activations[0].end_step, 2)

    def test_note_without_participants_sits_beside_last_message(self) -> None:
        model = _timeline(
            _msg("A", "B"),
            {"op": "note", "position": "right", "text": "r"},
            {"op": "note", "position": "left", "text": "l"},
        )
        right, left = model.notes
        self.assertEqual((right.participants, right.step), (["B"], 0))
        self.assertEqual((left.participants, left.step), (["A"], 0))

    def test_escaped_newlines_and_tags(self) -> None:
        model = _timeline(
            _msg("A", "B", text="one\\ntwo", tag="t1"),
            _msg("B", "A", tag="t2"),
            {"op": "constraint", "start": "t1", "end": "t2", "label": "1s"},
        )
        self.assertEqual(model.messages[0].text, "one\ntwo")
        self.assertEqual(model.tagged_steps, {"t1": 0, "t2": 1})
        self.assertEqual(model.time_constraints[0].label, "1s")

    def test_groups_and_metadata(self) -> None:
        model = model_from_dict(
            {
                "type": "timeline",
                "title": "Checkout",
                "operations": [
                    {"op": "group", "kind": "alt", "label": "ok"},
                    _msg("A", "B"),
                    {"op": "else", "label": "failure"},
                    {"op": "end"},
                    {"op": "footer", "text": "v1"},
                    {"op": "hide_footbox"},
                ],
            }
        )
        self.assertEqual(model.title, "Checkout")
        self.assertEqual(model.footer, "v1")
        self.assertTrue(model.hide_footbox)
        self.assertEqual(model.groups[0].sections[0].label, "failure")

    def test_flags_must_be_booleans(self) -> None:
        self.assertFalse(_timeline({"op": "hide_footbox", "value": False}).hide_footbox)
        for op in ({"op": "hide_footbox", "value": "false"}, {"op": "autoactivate", "enabled": 0}):
            with self.subTest(op=op):
                with self.assertRaises(ModelError) as ctx:
                    _timeline(op)
                self.assertEqual(ctx.exception.code, "E_MODEL")
                self.assertIn("true or false", ctx.exception.message)

    def test_bad_group_kind_and_spacing(self) -> None:
        with self.assertRaises(ModelError):
            _timeline({"op": "group", "kind": "switch"})
        with self.assertRaises(ModelError):
            _timeline({"op": "spacing", "height": -5})


class HierarchyFromDictTests(unittest.TestCase):
    def test_components_relationships_and_notes(self) -> None:
        model = model_from_dict(
            {
                "type": "hierarchy",
                "components": [
                    {"name": "api", "kind": "package"},
                    {"name": "web", "parent": "api"},
                    {"name": "db", "kind": "database", "alias": "store"},
                ],
                "relationships": [
                    {"from": "web", "to": "db", "arrow": "<..", "label": "reads"},
                    {"from": "web", "to": "db", "direction": "left"},
                ],
                "notes": [{"text": "primary", "anchor": "store", "position": "top"}],
            }
        )
        self.assertEqual(model.components[0].kind, ComponentKind.PACKAGE)
        self.assertEqual(model.components[1].parent_id, "api")
        reversed_rel, explicit = model.relationships
        self.assertEqual((reversed_rel.source, reversed_rel.target), ("db", "web"))
        self.assertEqual(explicit.direction, Direction.LEFT)
        self.assertEqual(model.notes[0].linked_to, "store")

    def test_missing_name_is_model_error(self) -> None:
        with self.assertRaises(ModelError) as ctx:
            model_from_dict({"type": "hierarchy", "components": [{"kind": "node"}]})
        self.assertIn("component 0", ctx.exception.message)


class LayoutToDictTests(unittest.TestCase):
    def test_timeline_payload_is_plain_json(self) -> None:
        model = _timeline(
            {"op": "group", "kind": "loop", "label": "retry"},
            _msg("A", "B", arrow="-->>"),
            {"op": "note", "position": "over", "participants": ["A"], "text": "inside"},
            {"op": "end"},
        )
        payload = layout_to_dict(timeline_layout.calculate_layout(model))
        json.dumps(payload)

        self.assertEqual(payload["type"], "timeline")
        message = payload["messages"][0]
        self.assertEqual(message["message"]["style"], "dotted")
        self.assertEqual(message["message"]["head"], "open")
        self.assertEqual(message["line_style"], "dashed")
        self.assertEqual(payload["notes"][0]["note"]["owner"]["label"], "retry")
        self.assertEqual(payload["groups"][0]["group"]["participants"], ["A", "B"])

    def test_hierarchy_payload_is_plain_json(self) -> None:
        model = model_from_dict(
            {
                "type": "hierarchy",
                "components": [{"name": "a", "kind": "node"}, {"name": "b"}],
                "relationships": [{"from": "a", "to": "b"}],
            }
        )
        payload = layout_to_dict(hierarchy_layout.calculate_layout(model))
        text = json.dumps(payload)

        self.assertEqual(payload["type"], "hierarchy")
        self.assertEqual(payload["components"][0]["component"]["kind"], "node")
        self.assertEqual(len(payload["relationships"][0]["path"]), 2)
        self.assertEqual(json.loads(text)["width"], payload["width"])


if __name__ == "__main__":
    unittest.main()
