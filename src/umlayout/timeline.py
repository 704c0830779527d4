"""Event-sequence (timeline) diagram model and its builder."""
from __future__ import annotations

import enum
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .errors import ModelError


class ParticipantKind(str, enum.Enum):
    PARTICIPANT = "participant"
    ACTOR = "actor"
    BOUNDARY = "boundary"
    CONTROL = "control"
    ENTITY = "entity"
    DATABASE = "database"
    COLLECTIONS = "collections"
    QUEUE = "queue"


class LineStyle(str, enum.Enum):
    ARROW = "arrow"
    DOTTED = "dotted"


class ArrowHead(str, enum.Enum):
    DEFAULT = "default"
    OPEN = "open"
    ASYNC = "async"
    HALF = "half"
    CIRCLE = "circle"
    LOST = "lost"
    FOUND = "found"
    NONE = "none"
    ARROW_CIRCLE = "arrow-circle"


class NotePosition(str, enum.Enum):
    LEFT = "left"
    RIGHT = "right"
    OVER = "over"
    ACROSS = "across"


class NoteShape(str, enum.Enum):
    FOLDER = "folder"
    RECTANGLE = "rectangle"
    HEXAGON = "hexagon"
    BUBBLE = "bubble"


_MARKER_ALPHABET = frozenset("<>ox\\/")

_PLAIN_MARKERS: Dict[str, ArrowHead] = {
    "": ArrowHead.NONE,
    ">": ArrowHead.DEFAULT,
    "<": ArrowHead.DEFAULT,
    ">>": ArrowHead.OPEN,
    "<<": ArrowHead.OPEN,
    "\\": ArrowHead.HALF,
    "/": ArrowHead.HALF,
    "\\\\": ArrowHead.OPEN,
    "//": ArrowHead.OPEN,
}

_HEAD_KINDS = frozenset({ArrowHead.DEFAULT, ArrowHead.OPEN, ArrowHead.HALF, ArrowHead.ARROW_CIRCLE})


def arrow_head_from_marker(marker: Optional[str]) -> ArrowHead:
    """Map the raw head characters at one end of an arrow to an ArrowHead.

    ``x`` anywhere means a lost message, ``o`` a circled head; remaining runs of
    plain head characters that have no dedicated spelling (``<>``, ``>>>``) read
    as a filled head.
    """
    text = marker or ""
    stray = set(text) - _MARKER_ALPHABET
    if stray:
        raise ModelError("E_MODEL", f"invalid arrow head marker: {text!r}")
    if "x" in text:
        return ArrowHead.LOST
    if "o" in text:
        return ArrowHead.ARROW_CIRCLE
    if text in _PLAIN_MARKERS:
        return _PLAIN_MARKERS[text]
    return ArrowHead.DEFAULT


def is_arrow_head(head: ArrowHead) -> bool:
    return head in _HEAD_KINDS


@dataclass
class Participant:
    name: str
    label: Optional[str] = None
    kind: ParticipantKind = ParticipantKind.PARTICIPANT
    order: Optional[int] = None
    color: Optional[str] = None
    stereotype: Optional[str] = None
    created_step: Optional[int] = None
    destroyed_step: Optional[int] = None

    @property
    def display_label(self) -> str:
        return self.label or self.name


@dataclass
class Message:
    source: str
    target: str
    text: str
    step: int
    style: LineStyle = LineStyle.ARROW
    head: ArrowHead = ArrowHead.DEFAULT
    start_head: ArrowHead = ArrowHead.NONE
    color: Optional[str] = None
    bidirectional: bool = False
    number: Optional[str] = None

    @property
    def is_self(self) -> bool:
        return self.source == self.target


@dataclass
class Activation:
    participant: str
    start_step: int
    level: int
    end_step: Optional[int] = None
    source_step: Optional[int] = None
    end_source_step: Optional[int] = None
    color: Optional[str] = None


@dataclass
class GroupSection:
    label: str
    start_step: int


@dataclass(eq=False)
class Group:
    kind: str
    label: str
    start_step: int
    level: int
    end_step: Optional[int] = None
    sections: List[GroupSection] = field(default_factory=list)
    participants: List[str] = field(default_factory=list)


@dataclass(eq=False)
class Note:
    text: str
    position: NotePosition
    step: int
    participants: List[str] = field(default_factory=list)
    color: Optional[str] = None
    shape: NoteShape = NoteShape.FOLDER
    owner: Optional[Group] = None


@dataclass
class Reference:
    participants: List[str]
    label: str
    start_step: int
    end_step: int


@dataclass
class Divider:
    label: str
    step: int


@dataclass
class Delay:
    step: int
    text: Optional[str] = None


@dataclass
class Spacing:
    height: float
    step: int


@dataclass
class TimeConstraint:
    start_tag: str
    end_tag: str
    label: str


@dataclass(frozen=True)
class TimelineModel:
    participants: Tuple[Participant, ...] = ()
    messages: Tuple[Message, ...] = ()
    activations: Tuple[Activation, ...] = ()
    groups: Tuple[Group, ...] = ()
    references: Tuple[Reference, ...] = ()
    notes: Tuple[Note, ...] = ()
    dividers: Tuple[Divider, ...] = ()
    delays: Tuple[Delay, ...] = ()
    spacings: Tuple[Spacing, ...] = ()
    time_constraints: Tuple[TimeConstraint, ...] = ()
    tagged_steps: Dict[str, int] = field(default_factory=dict)
    title: Optional[str] = None
    header: Optional[str] = None
    footer: Optional[str] = None
    hide_footbox: bool = False

    def participant(self, name: str) -> Optional[Participant]:
        for participant in self.participants:
            if participant.name == name:
                return participant
        return None

    def message_at(self, step: int) -> Optional[Message]:
        for message in self.messages:
            if message.step == step:
                return message
        return None


class TimelineBuilder:
    """Accumulates timeline entities while threading the step counter and group stack."""

    def __init__(self) -> None:
        self.participants: List[Participant] = []
        self.messages: List[Message] = []
        self.activations: List[Activation] = []
        self.groups: List[Group] = []
        self.references: List[Reference] = []
        self.notes: List[Note] = []
        self.dividers: List[Divider] = []
        self.delays: List[Delay] = []
        self.spacings: List[Spacing] = []
        self.time_constraints: List[TimeConstraint] = []
        self.tagged_steps: Dict[str, int] = {}
        self.title: Optional[str] = None
        self.header: Optional[str] = None
        self.footer: Optional[str] = None
        self.hide_footbox = False
        self.autoactivate = False

        self._step = 0
        self._group_stack: List[Group] = []
        self._autonumber_increment: Optional[int] = None
        self._autonumber_next = 0

    # -- step counter -------------------------------------------------

    @property
    def current_step(self) -> int:
        return self._step

    def next_step(self) -> int:
        step = self._step
        self._step += 1
        return step

    def rewind_step(self) -> None:
        if self._step > 0:
            self._step -= 1

    # -- participants -------------------------------------------------

    def find_participant(self, name: str) -> Optional[Participant]:
        for participant in self.participants:
            if participant.name == name:
                return participant
        return None

    def add_participant(
        self,
        name: str,
        label: Optional[str] = None,
        kind: ParticipantKind = ParticipantKind.PARTICIPANT,
        order: Optional[int] = None,
        color: Optional[str] = None,
        stereotype: Optional[str] = None,
    ) -> Participant:
        participant = self.find_participant(name)
        if participant is None:
            participant = Participant(name, label, kind, order, color, stereotype)
            self.participants.append(participant)
        else:
            if label:
                participant.label = label
            if kind != ParticipantKind.PARTICIPANT:
                participant.kind = kind
            if order is not None:
                participant.order = order
            if color:
                participant.color = color
            if stereotype:
                participant.stereotype = stereotype
        for group in self._group_stack:
            if name not in group.participants:
                group.participants.append(name)
        return participant

    def create(self, name: str, step: int) -> None:
        participant = self.find_participant(name)
        if participant is not None:
            participant.created_step = step

    def destroy(self, name: str, step: Optional[int] = None) -> None:
        participant = self.find_participant(name)
        if participant is None:
            return
        participant.destroyed_step = step if step is not None else self.next_step()
        self.deactivate(name, participant.destroyed_step)

    # -- messages -----------------------------------------------------

    def set_autonumber(self, start: int = 1, increment: int = 1) -> None:
        self._autonumber_increment = increment
        self._autonumber_next = start

    def set_autoactivate(self, enabled: bool) -> None:
        self.autoactivate = enabled

    def add_message(
        self,
        source: str,
        target: str,
        text: str = "",
        style: LineStyle = LineStyle.ARROW,
        head: ArrowHead = ArrowHead.DEFAULT,
        color: Optional[str] = None,
        bidirectional: bool = False,
        start_head: ArrowHead = ArrowHead.NONE,
    ) -> int:
        step = self.next_step()
        self.add_participant(source)
        self.add_participant(target)

        number = None
        if self._autonumber_increment is not None:
            number = str(self._autonumber_next)
            self._autonumber_next += self._autonumber_increment

        self.messages.append(
            Message(
                source=source,
                target=target,
                text=text,
                step=step,
                style=style,
                head=head,
                start_head=start_head,
                color=color,
                bidirectional=bidirectional,
                number=number,
            )
        )

        if self.autoactivate and source != target and style == LineStyle.ARROW:
            self.activate(target, step, step)
        return step

    def return_message(self, text: str = "") -> Optional[int]:
        open_activation = next(
            (a for a in reversed(self.activations) if a.end_step is None), None
        )
        if open_activation is None:
            return None
        source = open_activation.participant
        target = source
        if open_activation.source_step is not None:
            trigger = next(
                (m for m in self.messages if m.step == open_activation.source_step), None
            )
            if trigger is not None:
                target = trigger.source
        step = self.add_message(source, target, text, LineStyle.DOTTED, ArrowHead.OPEN)
        self.deactivate(source, step)
        return step

    # -- activations --------------------------------------------------

    def activate(
        self,
        name: str,
        step: Optional[int] = None,
        source_step: Optional[int] = None,
        color: Optional[str] = None,
    ) -> Activation:
        self.add_participant(name)
        level = sum(1 for a in self.activations if a.participant == name and a.end_step is None)
        activation = Activation(
            participant=name,
            start_step=self._step if step is None else step,
            level=level,
            source_step=source_step,
            color=color,
        )
        self.activations.append(activation)
        return activation

    def deactivate(
        self, name: str, step: Optional[int] = None, source_step: Optional[int] = None
    ) -> None:
        self.add_participant(name)
        for activation in reversed(self.activations):
            if activation.participant == name and activation.end_step is None:
                activation.end_step = self._step if step is None else step
                activation.end_source_step = source_step
                return

    # -- notes, groups and markers ------------------------------------

    def add_note(
        self,
        text: str,
        position: NotePosition,
        participants: Optional[List[str]] = None,
        color: Optional[str] = None,
        shape: NoteShape = NoteShape.FOLDER,
        step: Optional[int] = None,
    ) -> int:
        note_step = step if step is not None else self.next_step()
        owner = self._group_stack[-1] if self._group_stack else None
        self.notes.append(
            Note(
                text=text,
                position=position,
                step=note_step,
                participants=list(participants or []),
                color=color,
                shape=shape,
                owner=owner,
            )
        )
        return note_step

    def start_group(self, kind: str, label: str = "") -> Group:
        group = Group(
            kind=kind,
            label=label,
            start_step=self.next_step(),
            level=len(self._group_stack),
        )
        self.groups.append(group)
        self._group_stack.append(group)
        return group

    def add_group_section(self, label: str = "") -> None:
        if self._group_stack:
            self._group_stack[-1].sections.append(GroupSection(label, self.next_step()))

    def end_group(self) -> None:
        if self._group_stack:
            self._group_stack.pop().end_step = self.next_step()

    def add_reference(self, participants: List[str], label: str) -> Reference:
        start_step = self.next_step()
        end_step = self.next_step()
        reference = Reference(list(participants), label, start_step, end_step)
        self.references.append(reference)
        return reference

    def add_divider(self, label: str) -> None:
        self.dividers.append(Divider(label, self.next_step()))

    def add_delay(self, text: Optional[str] = None) -> None:
        self.delays.append(Delay(self.next_step(), text))

    def add_spacing(self, height: float = 30) -> None:
        self.spacings.append(Spacing(height, self.next_step()))

    def tag_step(self, tag: str, step: int) -> None:
        self.tagged_steps[tag] = step

    def add_time_constraint(self, start_tag: str, end_tag: str, label: str = "") -> None:
        self.time_constraints.append(TimeConstraint(start_tag, end_tag, label))

    def set_hide_footbox(self, hide: bool) -> None:
        self.hide_footbox = hide

    def build(self) -> TimelineModel:
        # One deepcopy so note owners keep pointing at the copied groups.
        (
            participants,
            messages,
            activations,
            groups,
            references,
            notes,
            dividers,
            delays,
            spacings,
            time_constraints,
        ) = deepcopy(
            (
                self.participants,
                self.messages,
                self.activations,
                self.groups,
                self.references,
                self.notes,
                self.dividers,
                self.delays,
                self.spacings,
                self.time_constraints,
            )
        )
        return TimelineModel(
            participants=tuple(participants),
            messages=tuple(messages),
            activations=tuple(activations),
            groups=tuple(groups),
            references=tuple(references),
            notes=tuple(notes),
            dividers=tuple(dividers),
            delays=tuple(delays),
            spacings=tuple(spacings),
            time_constraints=tuple(time_constraints),
            tagged_steps=dict(self.tagged_steps),
            title=self.title,
            header=self.header,
            footer=self.footer,
            hide_footbox=self.hide_footbox,
        )
