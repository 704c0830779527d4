"""Timeline layout: step axis, participant gaps, activations, notes and frames."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .geometry import Point, text_lines
from .theme import DEFAULT_TIMELINE_THEME, TimelineTheme
from .timeline import (
    Activation,
    Delay,
    Divider,
    Group,
    LineStyle,
    Message,
    Note,
    NotePosition,
    Participant,
    Reference,
    TimeConstraint,
    TimelineModel,
)

logger = logging.getLogger(__name__)

MESSAGE_CHAR_WIDTH = 8.0
NOTE_CHAR_WIDTH = 8.5
PARTICIPANT_CHAR_WIDTH = 9.0


@dataclass(frozen=True)
class ParticipantLayout:
    participant: Participant
    center_x: float
    x: float
    y: float
    width: float
    height: float
    destroyed_y: Optional[float] = None


@dataclass(frozen=True)
class MessageLayout:
    message: Message
    y: float
    points: Tuple[Point, ...]
    label_position: Point
    line_style: str


@dataclass(frozen=True)
class ActivationLayout:
    activation: Activation
    x: float
    y: float
    width: float
    height: float
    start_step: int
    end_step: int


@dataclass(frozen=True)
class NoteLayout:
    note: Note
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class SectionLayout:
    label: str
    y: float


@dataclass(frozen=True)
class GroupLayout:
    group: Group
    x: float
    y: float
    width: float
    height: float
    kind: str
    label: str
    sections: Tuple[SectionLayout, ...] = ()


@dataclass(frozen=True)
class DividerLayout:
    divider: Divider
    y: float


@dataclass(frozen=True)
class DelayLayout:
    delay: Delay
    y: float


@dataclass(frozen=True)
class ReferenceLayout:
    reference: Reference
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class TimeConstraintLayout:
    constraint: TimeConstraint
    x: float
    start_y: float
    end_y: float


@dataclass(frozen=True)
class TimelineLayout:
    width: float
    height: float
    step_y: Tuple[float, ...]
    participants: Tuple[ParticipantLayout, ...] = ()
    messages: Tuple[MessageLayout, ...] = ()
    activations: Tuple[ActivationLayout, ...] = ()
    notes: Tuple[NoteLayout, ...] = ()
    groups: Tuple[GroupLayout, ...] = ()
    dividers: Tuple[DividerLayout, ...] = ()
    delays: Tuple[DelayLayout, ...] = ()
    references: Tuple[ReferenceLayout, ...] = ()
    time_constraints: Tuple[TimeConstraintLayout, ...] = ()


@dataclass
class _Context:
    """Per-call scratch state; nothing here outlives one calculate_layout call."""

    model: TimelineModel
    theme: TimelineTheme
    participants: List[Participant]
    max_step: int
    activation_ends: Dict[int, int]
    group_ends: Dict[int, int]

    def index_of(self, name: str) -> int:
        for idx, participant in enumerate(self.participants):
            if participant.name == name:
                return idx
        return -1

    def clamp(self, step: int) -> int:
        return max(0, min(step, self.max_step))

    def activation_end(self, activation: Activation) -> int:
        return self.activation_ends[id(activation)]

    def group_end(self, group: Group) -> int:
        return self.group_ends[id(group)]

    def open_activations(self, name: str, step: int) -> List[Activation]:
        return [
            a
            for a in self.model.activations
            if a.participant == name and a.start_step <= step <= self.activation_end(a)
        ]

    def self_message_at(self, name: str, step: int) -> Optional[Message]:
        for message in self.model.messages:
            if message.step == step and message.source == name and message.target == name:
                return message
        return None

    def text_width(self, text: Optional[str], char_width: float) -> float:
        return self.theme.measurer.text_width(text, char_width)

    def note_width(self, note: Note) -> float:
        return max(self.theme.note_min_width, self.text_width(note.text, NOTE_CHAR_WIDTH) + 20)

    def note_height(self, note: Note) -> float:
        return len(text_lines(note.text)) * self.theme.note_line_height + 10


def calculate_layout(
    model: TimelineModel, theme: TimelineTheme = DEFAULT_TIMELINE_THEME
) -> TimelineLayout:
    """Compute the full geometry of a timeline model.

    The model is read only. Entities naming unknown participants are left out of
    the result instead of raising.
    """
    ctx = _make_context(model, theme)
    step_y, current_y = _step_positions(ctx)

    widths = [_participant_width(ctx, p) for p in ctx.participants]
    gaps = _participant_gaps(ctx, widths)
    rel_center_x = _relative_centers(widths, gaps)
    note_boxes = _note_boxes(ctx, rel_center_x, widths, step_y)
    min_x, max_x = _horizontal_bounds(ctx, rel_center_x, widths, note_boxes)

    offset_x = theme.padding - min_x
    base_width = max_x - min_x + theme.padding * 2
    total_width = base_width
    if model.time_constraints:
        longest = max(ctx.text_width(tc.label, MESSAGE_CHAR_WIDTH) for tc in model.time_constraints)
        total_width += 50 + longest

    footbox = 0.0 if model.hide_footbox else theme.participant_height + 20
    total_height = current_y + footbox + theme.padding

    participants = []
    for idx, participant in enumerate(ctx.participants):
        center_x = rel_center_x[idx] + offset_x
        if participant.created_step is not None:
            box_y = step_y[ctx.clamp(participant.created_step)] - theme.participant_height / 2
        else:
            box_y = theme.padding
        destroyed_y = None
        if participant.destroyed_step is not None:
            destroyed_y = step_y[ctx.clamp(participant.destroyed_step)]
        participants.append(
            ParticipantLayout(
                participant=participant,
                center_x=center_x,
                x=center_x - widths[idx] / 2,
                y=box_y,
                width=widths[idx],
                height=theme.participant_height,
                destroyed_y=destroyed_y,
            )
        )

    notes = []
    for note, (x, y, width, height) in note_boxes:
        if note.position == NotePosition.ACROSS:
            x = theme.padding
            width = max(base_width - theme.padding * 2, width)
        else:
            x += offset_x
        notes.append(NoteLayout(note, x, y, width, height))

    activations = _activation_layouts(ctx, participants, step_y)
    layout = TimelineLayout(
        width=total_width,
        height=total_height,
        step_y=tuple(step_y),
        participants=tuple(participants),
        messages=tuple(_message_layouts(ctx, participants, step_y, activations)),
        activations=tuple(activations),
        notes=tuple(notes),
        groups=tuple(_group_layouts(ctx, participants, notes, step_y)),
        dividers=tuple(DividerLayout(d, step_y[ctx.clamp(d.step)]) for d in model.dividers),
        delays=tuple(DelayLayout(d, step_y[ctx.clamp(d.step)]) for d in model.delays),
        references=tuple(_reference_layouts(ctx, participants, step_y)),
        time_constraints=tuple(_time_constraint_layouts(ctx, step_y, base_width)),
    )
    logger.debug(
        "timeline layout: %d steps, %d participants, gaps=%s, canvas=%.1fx%.1f",
        ctx.max_step + 1,
        len(participants),
        [round(g, 2) for g in gaps],
        layout.width,
        layout.height,
    )
    return layout


def _make_context(model: TimelineModel, theme: TimelineTheme) -> _Context:
    ordered = [p for p in model.participants if p.order is not None]
    unordered = [p for p in model.participants if p.order is None]
    # sorted() is stable, so equal orders keep declaration order.
    participants = sorted(ordered, key=lambda p: p.order) + unordered

    max_step = _max_step(model)
    activation_ends = {
        id(a): a.end_step if a.end_step is not None else max_step for a in model.activations
    }
    group_ends = {id(g): g.end_step if g.end_step is not None else max_step for g in model.groups}
    return _Context(model, theme, participants, max_step, activation_ends, group_ends)


def _first_step(entity: object) -> int:
    for attr in ("step", "start_step", "end_step"):
        value = getattr(entity, attr, None)
        if value is not None:
            return value
    return 0


def _max_step(model: TimelineModel) -> int:
    largest = 0
    for collection in (
        model.messages,
        model.activations,
        model.groups,
        model.references,
        model.notes,
        model.dividers,
        model.delays,
        model.spacings,
    ):
        for entity in collection:
            largest = max(largest, _first_step(entity))
    return largest + 1


def _step_positions(ctx: _Context) -> Tuple[List[float], float]:
    theme = ctx.theme
    model = ctx.model
    count = ctx.max_step + 1
    top = [0.0] * (count + 1)
    bottom = [0.0] * (count + 1)

    for note in model.notes:
        step = ctx.clamp(note.step)
        half = ctx.note_height(note) / 2
        top[step] = max(top[step], half)
        bottom[step] = max(bottom[step], half)

    for message in model.messages:
        step = ctx.clamp(message.step)
        line_count = len(text_lines(message.text))
        if message.is_self:
            loop_height = max(theme.self_loop_height, line_count * 20)
            bottom[step] = max(bottom[step], loop_height + 10)
        else:
            top[step] = max(top[step], line_count * 15 + 5)

    base = [theme.message_gap] * count
    for divider in model.dividers:
        base[ctx.clamp(divider.step)] = theme.divider_height
    for delay in model.delays:
        base[ctx.clamp(delay.step)] = theme.delay_height
    for spacing in model.spacings:
        base[ctx.clamp(spacing.step)] = spacing.height
    for reference in model.references:
        if reference.end_step == reference.start_step + 1:
            start = ctx.clamp(reference.start_step)
            base[start] = max(base[start], len(text_lines(reference.label)) * 15 + 40)

    step_y = [0.0] * count
    current_y = theme.padding + theme.header_offset
    for idx in range(count):
        step_y[idx] = current_y
        current_y += max(base[idx], bottom[idx] + top[idx + 1] + theme.step_padding)
    return step_y, current_y


def _participant_width(ctx: _Context, participant: Participant) -> float:
    label_width = ctx.text_width(participant.display_label, PARTICIPANT_CHAR_WIDTH)
    return max(ctx.theme.participant_width, label_width + 30)


def _participant_gaps(ctx: _Context, widths: Sequence[float]) -> List[float]:
    theme = ctx.theme
    model = ctx.model
    participants = ctx.participants
    gap_count = max(0, len(participants) - 1)
    gaps = [theme.participant_gap] * gap_count

    for step in range(ctx.max_step + 1):
        required = [0.0] * gap_count
        for idx, participant in enumerate(participants):
            name = participant.name
            if participant.created_step == step and idx < gap_count:
                required[idx] = max(required[idx], widths[idx] / 2 + 20)

            right_space = 15.0
            self_message = ctx.self_message_at(name, step)
            if self_message is not None:
                text_width = ctx.text_width(self_message.text, MESSAGE_CHAR_WIDTH) + 20
                right_space = theme.self_loop_width + text_width + 10
            open_activations = ctx.open_activations(name, step)
            if open_activations:
                max_level = max(a.level for a in open_activations)
                right_space = max(
                    right_space,
                    theme.activation_width / 2 + max_level * theme.activation_level_offset + 10,
                )
            left_space = 15.0
            for note in model.notes:
                if note.step != step or name not in note.participants:
                    continue
                if note.position == NotePosition.RIGHT:
                    right_space += ctx.note_width(note) + 10
                elif note.position == NotePosition.LEFT:
                    left_space += ctx.note_width(note) + 10

            if idx < gap_count:
                required[idx] += right_space
            if idx > 0:
                required[idx - 1] += left_space

        for gap_idx in range(gap_count):
            gaps[gap_idx] = max(gaps[gap_idx], required[gap_idx])

    for message in model.messages:
        source = ctx.index_of(message.source)
        target = ctx.index_of(message.target)
        if source == -1 or target == -1 or source == target:
            continue
        text_width = ctx.text_width(message.text, MESSAGE_CHAR_WIDTH) + 20
        _widen_span(gaps, widths, min(source, target), max(source, target), text_width)

    for note in model.notes:
        if note.position not in (NotePosition.OVER, NotePosition.ACROSS) or not note.participants:
            continue
        first = ctx.index_of(note.participants[0])
        last = ctx.index_of(note.participants[1]) if len(note.participants) > 1 else first
        if first == -1 or last == -1:
            continue
        note_width = ctx.note_width(note)
        start, end = min(first, last), max(first, last)
        if start == end:
            needed = note_width / 2 + 10
            if start < gap_count and gaps[start] < needed:
                gaps[start] = needed
        else:
            _widen_span(gaps, widths, start, end, note_width)
    return gaps


def _widen_span(
    gaps: List[float], widths: Sequence[float], start: int, end: int, needed: float
) -> None:
    space = sum(widths[k] / 2 + gaps[k] + widths[k + 1] / 2 for k in range(start, end))
    if space < needed:
        increment = (needed - space) / (end - start)
        for k in range(start, end):
            gaps[k] += increment


def _relative_centers(widths: Sequence[float], gaps: Sequence[float]) -> List[float]:
    centers: List[float] = []
    for idx, width in enumerate(widths):
        if idx == 0:
            centers.append(width / 2)
        else:
            centers.append(centers[-1] + widths[idx - 1] / 2 + gaps[idx - 1] + width / 2)
    return centers


_Box = Tuple[float, float, float, float]


def _note_boxes(
    ctx: _Context,
    rel_center_x: Sequence[float],
    widths: Sequence[float],
    step_y: Sequence[float],
) -> List[Tuple[Note, _Box]]:
    theme = ctx.theme
    boxes: List[Tuple[Note, _Box]] = []
    cursors: Dict[Tuple[int, int, NotePosition], float] = {}

    for note in ctx.model.notes:
        width = ctx.note_width(note)
        height = ctx.note_height(note)
        y = step_y[ctx.clamp(note.step)] - height / 2

        if note.position == NotePosition.ACROSS:
            boxes.append((note, (0.0, y, width, height)))
            continue

        indices = [i for i in (ctx.index_of(name) for name in note.participants) if i != -1]
        if not indices:
            continue

        if note.position == NotePosition.OVER:
            lo, hi = min(indices), max(indices)
            span_left = rel_center_x[lo] - widths[lo] / 2
            span = rel_center_x[hi] + widths[hi] / 2 - span_left
            final_width = max(span, width)
            boxes.append((note, (span_left - (final_width - span) / 2, y, final_width, height)))
            continue

        idx = min(indices) if note.position == NotePosition.LEFT else max(indices)
        participant = ctx.participants[idx]
        center_x = rel_center_x[idx]
        key = (note.step, idx, note.position)
        box_offset = widths[idx] / 2 if note.step == participant.created_step else 0.0

        if note.position == NotePosition.LEFT:
            right_edge = cursors.get(key, center_x - box_offset - 5)
            x = right_edge - width
            cursors[key] = x - 10
        else:
            self_offset = 0.0
            self_message = ctx.self_message_at(participant.name, note.step)
            if self_message is not None:
                self_offset = theme.self_loop_width + ctx.text_width(self_message.text, MESSAGE_CHAR_WIDTH) + 20
            open_activations = ctx.open_activations(participant.name, note.step)
            max_level = max((a.level for a in open_activations), default=0)
            activation_offset = theme.activation_width / 2 + max_level * theme.activation_level_offset
            base_right = max(box_offset, activation_offset, self_offset)
            x = cursors.get(key, center_x + base_right + 5)
            cursors[key] = x + width + 10
        boxes.append((note, (x, y, width, height)))
    return boxes


def _horizontal_bounds(
    ctx: _Context,
    rel_center_x: Sequence[float],
    widths: Sequence[float],
    note_boxes: Sequence[Tuple[Note, _Box]],
) -> Tuple[float, float]:
    min_x = 0.0
    max_x = 0.0
    for idx, center in enumerate(rel_center_x):
        left = center - widths[idx] / 2
        right = center + widths[idx] / 2
        if idx == 0:
            min_x, max_x = left, right
        else:
            min_x = min(min_x, left)
            max_x = max(max_x, right)

    for _, (x, _, width, _) in note_boxes:
        min_x = min(min_x, x)
        max_x = max(max_x, x + width)

    for message in ctx.model.messages:
        source = ctx.index_of(message.source)
        target = ctx.index_of(message.target)
        if source == -1 or target == -1:
            continue
        text_width = ctx.text_width(message.text, MESSAGE_CHAR_WIDTH) + 20
        if source == target:
            max_x = max(max_x, rel_center_x[source] + ctx.theme.self_loop_width + text_width + 10)
        else:
            mid = (rel_center_x[source] + rel_center_x[target]) / 2
            min_x = min(min_x, mid - text_width / 2)
            max_x = max(max_x, mid + text_width / 2)
    return min_x, max_x


def _find_participant(participants: Sequence[ParticipantLayout], name: str) -> Optional[ParticipantLayout]:
    for layout in participants:
        if layout.participant.name == name:
            return layout
    return None


def _activation_layouts(
    ctx: _Context, participants: Sequence[ParticipantLayout], step_y: Sequence[float]
) -> List[ActivationLayout]:
    theme = ctx.theme
    layouts = []
    for activation in ctx.model.activations:
        owner = _find_participant(participants, activation.participant)
        if owner is None:
            continue
        end_step = ctx.activation_end(activation)
        x = owner.center_x - theme.activation_width / 2 + activation.level * theme.activation_level_offset

        y = step_y[ctx.clamp(activation.start_step)]
        if activation.source_step is not None:
            trigger = ctx.model.message_at(activation.source_step)
            if trigger is not None and trigger.source == trigger.target == activation.participant:
                y += theme.self_activation_nudge

        y_end = step_y[ctx.clamp(end_step)]
        if activation.end_source_step is not None:
            closer = ctx.model.message_at(activation.end_source_step)
            if closer is not None and closer.source == closer.target == activation.participant:
                y_end += theme.self_activation_nudge

        layouts.append(
            ActivationLayout(
                activation=activation,
                x=x,
                y=y,
                width=theme.activation_width,
                height=max(theme.min_activation_height, y_end - y),
                start_step=activation.start_step,
                end_step=end_step,
            )
        )
    return layouts


def _active_bars(
    activations: Sequence[ActivationLayout], name: str, step: int
) -> List[ActivationLayout]:
    """Bars of ``name`` open at ``step``, innermost (highest level) first."""
    bars = [
        a
        for a in activations
        if a.activation.participant == name and a.start_step <= step <= a.end_step
    ]
    return sorted(bars, key=lambda a: -a.activation.level)


def _message_layouts(
    ctx: _Context,
    participants: Sequence[ParticipantLayout],
    step_y: Sequence[float],
    activations: Sequence[ActivationLayout],
) -> List[MessageLayout]:
    theme = ctx.theme
    layouts = []
    for message in ctx.model.messages:
        source_idx = next(
            (i for i, p in enumerate(participants) if p.participant.name == message.source), -1
        )
        target_idx = next(
            (i for i, p in enumerate(participants) if p.participant.name == message.target), -1
        )
        if source_idx == -1 or target_idx == -1:
            logger.debug("dropping message at step %d: unknown participant", message.step)
            continue

        source = participants[source_idx]
        target = participants[target_idx]
        y = step_y[ctx.clamp(message.step)]
        source_bars = _active_bars(activations, message.source, message.step)
        line_style = "dashed" if message.style == LineStyle.DOTTED else "solid"

        if source_idx == target_idx:
            points, label = _self_loop(theme, source.center_x, source_bars, message.step, y)
            layouts.append(MessageLayout(message, y, points, label, line_style))
            continue

        x1 = source.center_x
        x2 = target.center_x
        target_bars = _active_bars(activations, message.target, message.step)
        if source_idx < target_idx:
            if source_bars:
                x1 = source_bars[0].x + source_bars[0].width
            if target_bars:
                x2 = target_bars[0].x
        else:
            if source_bars:
                x1 = source_bars[0].x
            if target_bars:
                x2 = target_bars[0].x + target_bars[0].width
        if target.participant.created_step == message.step:
            x2 = target.x

        points = ((x1, y), (x2, y))
        layouts.append(MessageLayout(message, y, points, ((x1 + x2) / 2, y), line_style))
    return layouts


def _self_loop(
    theme: TimelineTheme,
    center_x: float,
    bars: Sequence[ActivationLayout],
    step: int,
    y: float,
) -> Tuple[Tuple[Point, ...], Point]:
    """Four-point loop leaving and re-entering the participant's current bar edge."""
    start_level: Optional[int] = 0
    end_level: Optional[int] = 0
    if bars:
        innermost = bars[0]
        if innermost.start_step == step:
            start_level, end_level = (1, 0) if len(bars) > 1 else (None, 0)
        elif innermost.end_step == step:
            start_level, end_level = (0, 1) if len(bars) > 1 else (0, None)

    def edge(level: Optional[int]) -> float:
        if level is not None and len(bars) > level:
            return bars[level].x + bars[level].width
        return center_x

    start_x = edge(start_level)
    end_x = edge(end_level)
    outer_x = max(start_x, end_x) + theme.self_loop_width
    points = (
        (start_x, y),
        (outer_x, y),
        (outer_x, y + theme.self_loop_height),
        (end_x, y + theme.self_loop_height),
    )
    return points, (outer_x + 5, y + 10)


def _group_layouts(
    ctx: _Context,
    participants: Sequence[ParticipantLayout],
    notes: Sequence[NoteLayout],
    step_y: Sequence[float],
) -> List[GroupLayout]:
    groups = ctx.model.groups
    max_level = max((g.level for g in groups), default=0)

    def indices_of(names: Sequence[str]) -> List[int]:
        return [
            i
            for i in (
                next((k for k, p in enumerate(participants) if p.participant.name == name), -1)
                for name in names
            )
            if i != -1
        ]

    layouts = []
    for group in groups:
        indices = indices_of(group.participants)
        if not indices:
            continue
        lo, hi = min(indices), max(indices)
        depth = max_level - group.level
        h_pad = 10 + depth * 10
        v_pad_top = 25 + depth * 8
        v_pad_bottom = 5 + depth * 8
        group_end = ctx.group_end(group)

        rect_x = participants[lo].x - h_pad
        rect_w = participants[hi].x + participants[hi].width + h_pad - rect_x

        for layout in notes:
            note = layout.note
            if not _note_inside(ctx, note, group, group_end):
                continue
            note_indices = indices_of(note.participants)
            if not note_indices:
                continue
            if note.position == NotePosition.RIGHT and max(note_indices) == hi:
                note_right = layout.x + layout.width
                if note_right + 10 > rect_x + rect_w:
                    rect_w = note_right + 10 - rect_x
            elif note.position == NotePosition.LEFT and min(note_indices) == lo:
                if layout.x - 10 < rect_x:
                    diff = rect_x - (layout.x - 10)
                    rect_x -= diff
                    rect_w += diff

        y_start = step_y[ctx.clamp(group.start_step)] - v_pad_top
        y_end = step_y[ctx.clamp(group_end)] + v_pad_bottom
        sections = tuple(
            SectionLayout(section.label, step_y[ctx.clamp(section.start_step)])
            for section in group.sections
        )
        layouts.append(
            GroupLayout(
                group=group,
                x=rect_x,
                y=y_start,
                width=rect_w,
                height=y_end - y_start,
                kind=group.kind,
                label=group.label,
                sections=sections,
            )
        )
    return layouts


def _note_inside(ctx: _Context, note: Note, group: Group, group_end: int) -> bool:
    if note.step < group.start_step or note.step > group_end:
        return False
    owner = note.owner
    if owner is None:
        return False
    if owner is group:
        return True
    owner_end = ctx.group_ends.get(id(owner), ctx.max_step)
    return owner.start_step >= group.start_step and owner_end <= group_end


def _reference_layouts(
    ctx: _Context, participants: Sequence[ParticipantLayout], step_y: Sequence[float]
) -> List[ReferenceLayout]:
    layouts = []
    for reference in ctx.model.references:
        covered = [p for p in participants if p.participant.name in reference.participants]
        if not covered:
            continue
        first = covered[0]
        last = covered[-1]
        y = step_y[ctx.clamp(reference.start_step)] - 10
        height = step_y[ctx.clamp(reference.end_step)] - y
        layouts.append(
            ReferenceLayout(reference, first.x, y, last.x + last.width - first.x, height)
        )
    return layouts


def _time_constraint_layouts(
    ctx: _Context, step_y: Sequence[float], base_width: float
) -> List[TimeConstraintLayout]:
    layouts = []
    tagged = ctx.model.tagged_steps
    for constraint in ctx.model.time_constraints:
        start = tagged.get(constraint.start_tag)
        end = tagged.get(constraint.end_tag)
        if start is None or end is None:
            continue
        layouts.append(
            TimeConstraintLayout(
                constraint=constraint,
                x=base_width - ctx.theme.padding + 20,
                start_y=step_y[ctx.clamp(start)],
                end_y=step_y[ctx.clamp(end)],
            )
        )
    return layouts
