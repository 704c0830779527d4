from __future__ import annotations

import sys
import unittest
from pathlib import Path

TESTS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = TESTS_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from umlayout.errors import ModelError
from umlayout.timeline import (
    ArrowHead,
    LineStyle,
    NotePosition,
    TimelineBuilder,
    arrow_head_from_marker,
    is_arrow_head,
)


class ArrowHeadTests(unittest.TestCase):
    def test_known_markers(self) -> None:
        cases = {
            "": ArrowHead.NONE,
            ">": ArrowHead.DEFAULT,
            "<": ArrowHead.DEFAULT,
            ">>": ArrowHead.OPEN,
            "//": ArrowHead.OPEN,
            "\\": ArrowHead.HALF,
            "x": ArrowHead.LOST,
            ">o": ArrowHead.ARROW_CIRCLE,
            "<>": ArrowHead.DEFAULT,
        }
        for marker, expected in cases.items():
            with self.subTest(marker=marker):
                self.assertEqual(arrow_head_from_marker(marker), expected)

    def test_none_marker_means_no_head(self) -> None:
        self.assertEqual(arrow_head_from_marker(None), ArrowHead.NONE)

    def test_invalid_marker_is_rejected(self) -> None:
        with self.assertRaises(ModelError) as ctx:
            arrow_head_from_marker(">#")
        self.assertEqual(ctx.exception.code, "E_MODEL")

    def test_is_arrow_head(self) -> None:
        self.assertTrue(is_arrow_head(ArrowHead.OPEN))
        self.assertFalse(is_arrow_head(ArrowHead.LOST))
        self.assertFalse(is_arrow_head(ArrowHead.NONE))


class TimelineBuilderTests(unittest.TestCase):
    def test_messages_take_consecutive_steps_and_register_participants(self) -> None:
        builder = TimelineBuilder()
        self.assertEqual(builder.add_message("A", "B", "one"), 0)
        self.assertEqual(builder.add_message("B", "C", "two"), 1)
        self.assertEqual(builder.current_step, 2)
        self.assertEqual([p.name for p in builder.participants], ["A", "B", "C"])

    def test_rewind_never_goes_negative(self) -> None:
        builder = TimelineBuilder()
        builder.rewind_step()
        self.assertEqual(builder.current_step, 0)
        builder.next_step()
        builder.rewind_step()
        self.assertEqual(builder.current_step, 0)

    def test_participant_redeclaration_merges_attributes(self) -> None:
        builder = TimelineBuilder()
        builder.add_message("A", "B")
        builder.add_participant("A", label="Alice", order=3)
        participant = builder.find_participant("A")
        self.assertEqual(participant.display_label, "Alice")
        self.assertEqual(participant.order, 3)
        self.assertEqual(len(builder.participants), 2)

    def test_nested_activations_increase_level(self) -> None:
        builder = TimelineBuilder()
        step = builder.add_message("A", "B")
        outer = builder.activate("B", step, step)
        step = builder.add_message("B", "B", "self")
        inner = builder.activate("B", step, step)
        builder.deactivate("B", 2)
        third = builder.activate("B", 3)

        self.assertEqual(outer.level, 0)
        self.assertEqual(inner.level, 1)
        self.assertEqual(inner.end_step, 2)
        self.assertIsNone(outer.end_step)
        self.assertEqual(third.level, 1)

    def test_deactivate_without_open_activation_is_ignored(self) -> None:
        builder = TimelineBuilder()
        builder.deactivate("A", 0)
        self.assertEqual(builder.activations, [])
        self.assertEqual([p.name for p in builder.participants], ["A"])

    def test_return_message_answers_the_triggering_sender(self) -> None:
        builder = TimelineBuilder()
        step = builder.add_message("A", "B", "request")
        builder.activate("B", step, step)
        reply_step = builder.return_message("reply")

        reply = builder.messages[-1]
        self.assertEqual(reply_step, 1)
        self.assertEqual((reply.source, reply.target), ("B", "A"))
        self.assertEqual(reply.style, LineStyle.DOTTED)
        self.assertEqual(reply.head, ArrowHead.OPEN)
        self.assertEqual(builder.activations[0].end_step, 1)

    def test_return_message_without_activation_does_nothing(self) -> None:
        builder = TimelineBuilder()
        builder.add_message("A", "B")
        self.assertIsNone(builder.return_message("reply"))
        self.assertEqual(len(builder.messages), 1)

    def test_autonumber_start_and_increment(self) -> None:
        builder = TimelineBuilder()
        builder.add_message("A", "B")
        builder.set_autonumber(10, 5)
        builder.add_message("A", "B")
        builder.add_message("B", "A")
        self.assertEqual([m.number for m in builder.messages], [None, "10", "15"])

    def test_autoactivate_activates_target_of_solid_messages(self) -> None:
        builder = TimelineBuilder()
        builder.set_autoactivate(True)
        builder.add_message("A", "B")
        builder.add_message("B", "A", style=LineStyle.DOTTED)
        builder.add_message("A", "A")
        self.assertEqual(len(builder.activations), 1)
        activation = builder.activations[0]
        self.assertEqual((activation.participant, activation.start_step), ("B", 0))
        self.assertEqual(activation.source_step, 0)

    def test_destroy_closes_open_activation(self) -> None:
        builder = TimelineBuilder()
        step = builder.add_message("A", "B")
        builder.activate("B", step)
        builder.destroy("B")
        self.assertEqual(builder.find_participant("B").destroyed_step, 1)
        self.assertEqual(builder.activations[0].end_step, 1)

    def test_groups_nest_and_collect_participants(self) -> None:
        builder = TimelineBuilder()
        outer = builder.start_group("alt", "ok")
        builder.add_message("A", "B")
        inner = builder.start_group("loop", "retry")
        builder.add_message("B", "C")
        builder.end_group()
        builder.add_group_section("failure")
        builder.end_group()

        self.assertEqual((outer.level, inner.level), (0, 1))
        self.assertEqual(outer.participants, ["A", "B", "C"])
        self.assertEqual(inner.participants, ["B", "C"])
        self.assertEqual(inner.end_step, 4)
        self.assertEqual(outer.sections[0].start_step, 5)
        self.assertEqual(outer.end_step, 6)

    def test_reference_spans_two_steps(self) -> None:
        builder = TimelineBuilder()
        reference = builder.add_reference(["A", "B"], "login")
        self.assertEqual((reference.start_step, reference.end_step), (0, 1))
        self.assertEqual(builder.current_step, 2)

    def test_build_snapshot_keeps_note_owner_identity(self) -> None:
        builder = TimelineBuilder()
        builder.start_group("opt", "outer")
        builder.start_group("loop", "inner")
        builder.add_note("inside", NotePosition.OVER, ["A"])
        builder.end_group()
        builder.end_group()

        model = builder.build()
        self.assertIs(model.notes[0].owner, model.groups[1])
        self.assertIsNot(model.groups[1], builder.groups[1])

    def test_build_is_isolated_from_later_changes(self) -> None:
        builder = TimelineBuilder()
        step = builder.add_message("A", "B")
        builder.activate("B", step)
        builder.tag_step("start", step)
        model = builder.build()

        builder.deactivate("B", 5)
        builder.add_message("B", "A")
        builder.tag_step("end", 1)

        self.assertIsNone(model.activations[0].end_step)
        self.assertEqual(len(model.messages), 1)
        self.assertEqual(model.tagged_steps, {"start": 0})
        self.assertIs(model.message_at(0), model.messages[0])
        self.assertIsNone(model.message_at(1))


if __name__ == "__main__":
    unittest.main()
