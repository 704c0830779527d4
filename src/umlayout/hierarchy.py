"""Containment/relationship (hierarchy) diagram model and its builder."""
from __future__ import annotations

import enum
import re
from copy import deepcopy
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .errors import ModelError


class ComponentKind(str, enum.Enum):
    COMPONENT = "component"
    INTERFACE = "interface"
    PACKAGE = "package"
    NODE = "node"
    FOLDER = "folder"
    FRAME = "frame"
    CLOUD = "cloud"
    DATABASE = "database"
    PORT = "port"
    PORTIN = "portin"
    PORTOUT = "portout"

    @property
    def is_port(self) -> bool:
        return self in (ComponentKind.PORT, ComponentKind.PORTIN, ComponentKind.PORTOUT)

    @property
    def is_container(self) -> bool:
        return self in (
            ComponentKind.PACKAGE,
            ComponentKind.NODE,
            ComponentKind.FOLDER,
            ComponentKind.FRAME,
            ComponentKind.CLOUD,
            ComponentKind.DATABASE,
        )


class LineStyle(str, enum.Enum):
    SOLID = "solid"
    DASHED = "dashed"
    DOTTED = "dotted"


class Direction(str, enum.Enum):
    LEFT = "left"
    RIGHT = "right"
    UP = "up"
    DOWN = "down"

    @property
    def is_vertical(self) -> bool:
        return self in (Direction.UP, Direction.DOWN)

    def reversed(self) -> "Direction":
        return _OPPOSITE[self]


_OPPOSITE = {
    Direction.DOWN: Direction.UP,
    Direction.UP: Direction.DOWN,
    Direction.RIGHT: Direction.LEFT,
    Direction.LEFT: Direction.RIGHT,
}

NOTE_SIDES = ("left", "right", "top", "bottom")

_ARROW_PATTERN = re.compile(r"^[<>]*[-.]+[<>]*[^\s\[\]]*$")
_LINE_RUN = re.compile(r"-+|\.+")


def _check_arrow(arrow: str) -> None:
    if not _ARROW_PATTERN.match(arrow or ""):
        raise ModelError("E_MODEL", f"invalid relationship arrow: {arrow!r}")


def is_reversed_arrow(arrow: str) -> bool:
    return "<" in arrow and ">" not in arrow


def direction_from_arrow(arrow: str) -> Optional[Direction]:
    """Resolve the direction hint carried by an arrow such as ``-->`` or ``-left->``.

    Keywords win. Otherwise the first dash/dot run decides: two or more
    characters point down, one points right. Arrows drawn backwards (``<--``)
    point the other way.
    """
    _check_arrow(arrow)
    if "left" in arrow or "le" in arrow:
        return Direction.LEFT
    if "right" in arrow or "ri" in arrow:
        return Direction.RIGHT
    if "up" in arrow:
        return Direction.UP
    if "down" in arrow or "do" in arrow:
        return Direction.DOWN

    run = _LINE_RUN.search(arrow.replace("<", "").replace(">", ""))
    if run is None:
        return None
    vertical = len(run.group(0)) >= 2
    if is_reversed_arrow(arrow):
        return Direction.UP if vertical else Direction.LEFT
    return Direction.DOWN if vertical else Direction.RIGHT


def line_style_from_arrow(arrow: str) -> LineStyle:
    _check_arrow(arrow)
    if ".." in arrow:
        return LineStyle.DASHED
    return LineStyle.SOLID


@dataclass
class Component:
    name: str
    kind: ComponentKind = ComponentKind.COMPONENT
    label: Optional[str] = None
    parent_id: Optional[str] = None
    color: Optional[str] = None
    alias: Optional[str] = None
    declaration_order: int = 0

    @property
    def display_label(self) -> str:
        return self.label or self.name


@dataclass
class Relationship:
    source: str
    target: str
    style: LineStyle = LineStyle.SOLID
    label: Optional[str] = None
    direction: Optional[Direction] = None
    show_arrow_head: bool = True

    @property
    def resolved_direction(self) -> Direction:
        return self.direction or Direction.DOWN


@dataclass
class Note:
    text: str
    id: str
    position: Optional[str] = None
    linked_to: Optional[str] = None
    alias: Optional[str] = None

    @property
    def key(self) -> str:
        return self.alias or self.id


@dataclass(frozen=True)
class HierarchyModel:
    components: Tuple[Component, ...] = ()
    relationships: Tuple[Relationship, ...] = ()
    notes: Tuple[Note, ...] = ()

    def find_component(self, name: str) -> Optional[Component]:
        for component in self.components:
            if component.name == name or component.alias == name:
                return component
        return None

    def children_of(self, name: str) -> List[Component]:
        return [c for c in self.components if c.parent_id == name]


class HierarchyBuilder:
    def __init__(self) -> None:
        self.components: List[Component] = []
        self.relationships: List[Relationship] = []
        self.notes: List[Note] = []

    def find_component(self, name: str) -> Optional[Component]:
        for component in self.components:
            if component.name == name or component.alias == name:
                return component
        return None

    def add_component(
        self,
        name: str,
        kind: ComponentKind = ComponentKind.COMPONENT,
        label: Optional[str] = None,
        parent_id: Optional[str] = None,
        color: Optional[str] = None,
        alias: Optional[str] = None,
    ) -> Component:
        """Declare a component, merging into an earlier declaration of the same name.

        A repeated declaration fills in label, parent and colour and upgrades a
        plain component to a more specific kind; it never downgrades a kind.
        """
        if parent_id is not None and parent_id == name:
            raise ModelError("E_MODEL", f"component {name!r} cannot contain itself")
        component = next((c for c in self.components if c.name == name), None)
        if component is None:
            component = Component(
                name=name,
                kind=kind,
                label=label or name,
                parent_id=parent_id,
                color=color,
                alias=alias,
                declaration_order=len(self.components),
            )
            self.components.append(component)
            return component
        if label:
            component.label = label
        if parent_id:
            component.parent_id = parent_id
        if color:
            component.color = color
        if alias:
            component.alias = alias
        if kind != ComponentKind.COMPONENT and component.kind == ComponentKind.COMPONENT:
            component.kind = kind
        return component

    def add_relationship(
        self,
        source: str,
        target: str,
        style: LineStyle = LineStyle.SOLID,
        label: Optional[str] = None,
        direction: Optional[Direction] = None,
        show_arrow_head: bool = True,
    ) -> Relationship:
        relationship = Relationship(source, target, style, label, direction, show_arrow_head)
        self.relationships.append(relationship)
        return relationship

    def connect(
        self,
        source: str,
        arrow: str,
        target: str,
        label: Optional[str] = None,
        direction: Optional[Direction] = None,
    ) -> Relationship:
        """Add a relationship written as ``source ARROW target``.

        A backwards arrow (``<--``) swaps the endpoints so the relationship always
        points at its head, and the head is shown. An explicit ``direction``
        overrides the arrow's hint.
        """
        _check_arrow(arrow)
        if is_reversed_arrow(arrow):
            source, target = target, source
        return self.add_relationship(
            source,
            target,
            style=line_style_from_arrow(arrow),
            label=label,
            direction=direction or direction_from_arrow(arrow),
            show_arrow_head=">" in arrow or "<" in arrow,
        )

    def add_note(
        self,
        text: str,
        position: Optional[str] = None,
        linked_to: Optional[str] = None,
        alias: Optional[str] = None,
    ) -> Note:
        if position is not None and position not in NOTE_SIDES:
            raise ModelError("E_MODEL", f"invalid note position: {position!r}")
        note = Note(text=text, id=f"note_{len(self.notes)}", position=position, linked_to=linked_to, alias=alias)
        self.notes.append(note)
        return note

    def build(self) -> HierarchyModel:
        components, relationships, notes = deepcopy((self.components, self.relationships, self.notes))
        return HierarchyModel(tuple(components), tuple(relationships), tuple(notes))
