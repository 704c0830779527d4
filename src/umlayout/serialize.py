"""JSON boundary: build models from plain dictionaries and flatten layout results."""
from __future__ import annotations

import enum
import re
from dataclasses import dataclass, fields, is_dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from .errors import ModelError
from .hierarchy import ComponentKind, Direction, HierarchyBuilder, HierarchyModel
from .hierarchy_layout import HierarchyLayout
from .timeline import (
    ArrowHead,
    Group,
    LineStyle,
    NotePosition,
    NoteShape,
    ParticipantKind,
    TimelineBuilder,
    TimelineModel,
    arrow_head_from_marker,
    is_arrow_head,
)
from .timeline_layout import TimelineLayout

Model = Union[TimelineModel, HierarchyModel]
Layout = Union[TimelineLayout, HierarchyLayout]

_MESSAGE_ARROW = re.compile(r"^([<ox\\/]*)([-.]+)([>ox\\/]*)$")
_SHORTHANDS = ("++", "--", "--++", "++--", "**", "!!")
_GROUP_KINDS = ("alt", "opt", "loop", "par", "break", "critical", "group")


def _fail(where: str, message: str) -> ModelError:
    return ModelError("E_MODEL", f"{where}: {message}")


def _require_str(data: Mapping[str, Any], key: str, where: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise _fail(where, f"'{key}' must be a non-empty string")
    return value


def _optional_str(data: Mapping[str, Any], key: str, where: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise _fail(where, f"'{key}' must be a string")
    return value


def _optional_int(data: Mapping[str, Any], key: str, where: str) -> Optional[int]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise _fail(where, f"'{key}' must be an integer")
    return value


def _optional_bool(data: Mapping[str, Any], key: str, where: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise _fail(where, f"'{key}' must be true or false")
    return value


def _enum_value(enum_cls: Any, value: Any, where: str, key: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        choices = ", ".join(member.value for member in enum_cls)
        raise _fail(where, f"'{key}' must be one of: {choices}") from None


def _names(data: Mapping[str, Any], key: str, where: str) -> List[str]:
    value = data.get(key, [])
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise _fail(where, f"'{key}' must be a list of participant names")
    return list(value)


@dataclass
class _ArrowParts:
    style: LineStyle
    head: ArrowHead
    start_head: ArrowHead
    bidirectional: bool


def parse_message_arrow(arrow: str) -> _ArrowParts:
    """Split a message arrow such as ``->``, ``-->>``, ``<->`` or ``->x`` into its parts."""
    match = _MESSAGE_ARROW.match(arrow)
    if match is None:
        raise ModelError("E_MODEL", f"invalid message arrow: {arrow!r}")
    start, line, end = match.groups()
    dotted = ".." in line or "--" in line
    return _ArrowParts(
        style=LineStyle.DOTTED if dotted else LineStyle.ARROW,
        head=arrow_head_from_marker(end),
        start_head=arrow_head_from_marker(start),
        bidirectional="<" in start and ">" in end,
    )


class _TimelineReplay:
    """Replays timeline operations, tracking the last message the way a parser would."""

    def __init__(self) -> None:
        self.builder = TimelineBuilder()
        self.last_step = -1
        self.last_source: Optional[str] = None
        self.last_target: Optional[str] = None
        self.last_style: Optional[LineStyle] = None
        self.last_activation: Dict[str, int] = {}
        self.handlers: Dict[str, Callable[[Mapping[str, Any], str], None]] = {
            "participant": self._participant,
            "message": self._message,
            "activate": self._activate,
            "deactivate": self._deactivate,
            "create": self._create,
            "destroy": self._destroy,
            "return": self._return,
            "note": self._note,
            "group": self._group,
            "else": self._else,
            "end": self._end,
            "ref": self._ref,
            "divider": self._divider,
            "delay": self._delay,
            "spacing": self._spacing,
            "autonumber": self._autonumber,
            "autoactivate": self._autoactivate,
            "constraint": self._constraint,
            "hide_footbox": self._hide_footbox,
            "title": self._meta,
            "header": self._meta,
            "footer": self._meta,
        }

    def run(self, operations: Any) -> TimelineModel:
        if not isinstance(operations, list):
            raise ModelError("E_MODEL", "'operations' must be a list")
        for idx, operation in enumerate(operations):
            where = f"operation {idx}"
            if not isinstance(operation, Mapping):
                raise _fail(where, "must be an object")
            name = operation.get("op")
            handler = self.handlers.get(name) if isinstance(name, str) else None
            if handler is None:
                raise _fail(where, f"unknown op {name!r}")
            handler(operation, where)
        return self.builder.build()

    def _aligned_with_last_message(self, name: str) -> bool:
        if self.last_step == -1 or self.last_step <= self.last_activation.get(name, -1):
            return False
        if self.last_style == LineStyle.ARROW:
            return name in (self.last_source, self.last_target)
        return name == self.last_source

    def _participant(self, op: Mapping[str, Any], where: str) -> None:
        self.builder.add_participant(
            _require_str(op, "name", where),
            label=_optional_str(op, "label", where),
            kind=_enum_value(ParticipantKind, op.get("kind", "participant"), where, "kind"),
            order=_optional_int(op, "order", where),
            color=_optional_str(op, "color", where),
            stereotype=_optional_str(op, "stereotype", where),
        )

    def _message(self, op: Mapping[str, Any], where: str) -> None:
        source = _require_str(op, "from", where)
        target = _require_str(op, "to", where)
        parts = parse_message_arrow(op.get("arrow", "->") or "")
        shorthand = op.get("shorthand")
        if shorthand is not None and shorthand not in _SHORTHANDS:
            raise _fail(where, f"unknown shorthand {shorthand!r}")
        if source == "x":
            parts.start_head = ArrowHead.FOUND

        text = (_optional_str(op, "text", where) or "").replace("\\n", "\n")
        step = self.builder.add_message(
            source,
            target,
            text,
            style=parts.style,
            head=parts.head,
            color=_optional_str(op, "color", where),
            bidirectional=parts.bidirectional,
            start_head=parts.start_head,
        )
        tag = _optional_str(op, "tag", where)
        if tag:
            self.builder.tag_step(tag, step)

        self.last_step = step
        self.last_source, self.last_target = source, target
        if is_arrow_head(parts.start_head) and not is_arrow_head(parts.head):
            self.last_source, self.last_target = target, source
        self.last_style = parts.style

        color = _optional_str(op, "activation_color", where)
        if shorthand == "++":
            self.builder.activate(target, step, step, color)
            self.last_activation[target] = step
        elif shorthand == "--":
            self.builder.deactivate(source, step, step)
        elif shorthand == "--++":
            self.builder.deactivate(source, step, step)
            self.builder.activate(target, step, step, color)
            self.last_activation[target] = step
        elif shorthand == "++--":
            self.builder.activate(source, step, step, color)
            self.last_activation[source] = step
            self.builder.deactivate(target, step, step)
        elif shorthand == "**":
            self.builder.create(target, step)
        elif shorthand == "!!":
            self.builder.destroy(target, step)

    def _activate(self, op: Mapping[str, Any], where: str) -> None:
        name = _require_str(op, "name", where)
        color = _optional_str(op, "color", where)
        if name == self.last_target and self.last_step != -1:
            self.builder.activate(name, self.last_step, self.last_step, color)
            self.last_activation[name] = self.last_step
        else:
            step = self.builder.next_step()
            self.builder.activate(name, step, None, color)
            self.last_activation[name] = step

    def _deactivate(self, op: Mapping[str, Any], where: str) -> None:
        name = _require_str(op, "name", where)
        if self._aligned_with_last_message(name):
            self.builder.deactivate(name, self.last_step)
        else:
            self.builder.deactivate(name, self.builder.next_step())

    def _create(self, op: Mapping[str, Any], where: str) -> None:
        name = _require_str(op, "name", where)
        kind = _enum_value(ParticipantKind, op.get("kind", "participant"), where, "kind")
        self.builder.add_participant(name, kind=kind)
        self.builder.create(name, self.builder.current_step)

    def _destroy(self, op: Mapping[str, Any], where: str) -> None:
        name = _require_str(op, "name", where)
        if self._aligned_with_last_message(name):
            self.builder.destroy(name, self.last_step)
        else:
            self.builder.destroy(name, self.builder.next_step())

    def _return(self, op: Mapping[str, Any], where: str) -> None:
        text = (_optional_str(op, "text", where) or "").replace("\\n", "\n")
        self.builder.return_message(text)

    def _note(self, op: Mapping[str, Any], where: str) -> None:
        position = _enum_value(NotePosition, op.get("position", "right"), where, "position")
        participants = _names(op, "participants", where)
        shape = _enum_value(NoteShape, op.get("shape", "folder"), where, "shape")
        text = (_optional_str(op, "text", where) or "").replace("\\n", "\n")
        step = None
        if not participants and position in (NotePosition.LEFT, NotePosition.RIGHT):
            participants = self._participants_beside_last_message(position)
            if self.last_step != -1:
                step = self.last_step
        self.builder.add_note(
            text,
            position,
            participants,
            color=_optional_str(op, "color", where),
            shape=shape,
            step=step,
        )

    def _participants_beside_last_message(self, position: NotePosition) -> List[str]:
        if not self.last_source or not self.last_target:
            return []
        source = self.builder.find_participant(self.last_source)
        target = self.builder.find_participant(self.last_target)
        if source is None or target is None:
            return [self.last_target]
        participants = self.builder.participants
        source_first = participants.index(source) < participants.index(target)
        if source.order is not None and target.order is not None:
            source_first = source.order < target.order
        if position == NotePosition.LEFT:
            return [self.last_source if source_first else self.last_target]
        return [self.last_target if source_first else self.last_source]

    def _group(self, op: Mapping[str, Any], where: str) -> None:
        kind = op.get("kind", "group")
        if kind not in _GROUP_KINDS:
            raise _fail(where, f"'kind' must be one of: {', '.join(_GROUP_KINDS)}")
        self.builder.start_group(kind, _optional_str(op, "label", where) or "")

    def _else(self, op: Mapping[str, Any], where: str) -> None:
        self.builder.add_group_section(_optional_str(op, "label", where) or "")

    def _end(self, op: Mapping[str, Any], where: str) -> None:
        self.builder.end_group()

    def _ref(self, op: Mapping[str, Any], where: str) -> None:
        participants = _names(op, "participants", where)
        if not participants:
            raise _fail(where, "'participants' must name at least one participant")
        label = (_optional_str(op, "label", where) or "").replace("\\n", "\n")
        self.builder.add_reference(participants, label)

    def _divider(self, op: Mapping[str, Any], where: str) -> None:
        self.builder.add_divider(_optional_str(op, "label", where) or "")

    def _delay(self, op: Mapping[str, Any], where: str) -> None:
        self.builder.add_delay(_optional_str(op, "text", where))

    def _spacing(self, op: Mapping[str, Any], where: str) -> None:
        height = op.get("height", 30)
        if isinstance(height, bool) or not isinstance(height, (int, float)) or height <= 0:
            raise _fail(where, "'height' must be a positive number")
        self.builder.add_spacing(height)

    def _autonumber(self, op: Mapping[str, Any], where: str) -> None:
        start = _optional_int(op, "start", where)
        increment = _optional_int(op, "increment", where)
        self.builder.set_autonumber(1 if start is None else start, 1 if increment is None else increment)

    def _autoactivate(self, op: Mapping[str, Any], where: str) -> None:
        self.builder.set_autoactivate(_optional_bool(op, "enabled", where, True))

    def _constraint(self, op: Mapping[str, Any], where: str) -> None:
        self.builder.add_time_constraint(
            _require_str(op, "start", where),
            _require_str(op, "end", where),
            _optional_str(op, "label", where) or "",
        )

    def _hide_footbox(self, op: Mapping[str, Any], where: str) -> None:
        self.builder.set_hide_footbox(_optional_bool(op, "value", where, True))

    def _meta(self, op: Mapping[str, Any], where: str) -> None:
        setattr(self.builder, op["op"], _optional_str(op, "text", where))


def timeline_from_dict(data: Mapping[str, Any]) -> TimelineModel:
    replay = _TimelineReplay()
    for key in ("title", "header", "footer"):
        if key in data:
            setattr(replay.builder, key, _optional_str(data, key, "timeline"))
    return replay.run(data.get("operations", []))


def hierarchy_from_dict(data: Mapping[str, Any]) -> HierarchyModel:
    builder = HierarchyBuilder()

    components = data.get("components", [])
    if not isinstance(components, list):
        raise ModelError("E_MODEL", "'components' must be a list")
    for idx, item in enumerate(components):
        where = f"component {idx}"
        if not isinstance(item, Mapping):
            raise _fail(where, "must be an object")
        builder.add_component(
            _require_str(item, "name", where),
            kind=_enum_value(ComponentKind, item.get("kind", "component"), where, "kind"),
            label=_optional_str(item, "label", where),
            parent_id=_optional_str(item, "parent", where),
            color=_optional_str(item, "color", where),
            alias=_optional_str(item, "alias", where),
        )

    relationships = data.get("relationships", [])
    if not isinstance(relationships, list):
        raise ModelError("E_MODEL", "'relationships' must be a list")
    for idx, item in enumerate(relationships):
        where = f"relationship {idx}"
        if not isinstance(item, Mapping):
            raise _fail(where, "must be an object")
        direction = item.get("direction")
        builder.connect(
            _require_str(item, "from", where),
            item.get("arrow", "-->") or "",
            _require_str(item, "to", where),
            label=_optional_str(item, "label", where),
            direction=None if direction is None else _enum_value(Direction, direction, where, "direction"),
        )

    notes = data.get("notes", [])
    if not isinstance(notes, list):
        raise ModelError("E_MODEL", "'notes' must be a list")
    for idx, item in enumerate(notes):
        where = f"note {idx}"
        if not isinstance(item, Mapping):
            raise _fail(where, "must be an object")
        builder.add_note(
            (_optional_str(item, "text", where) or "").replace("\\n", "\n"),
            position=_optional_str(item, "position", where),
            linked_to=_optional_str(item, "anchor", where),
            alias=_optional_str(item, "alias", where),
        )
    return builder.build()


def model_from_dict(data: Any) -> Model:
    if not isinstance(data, Mapping):
        raise ModelError("E_MODEL", "model must be a JSON object")
    kind = data.get("type")
    if kind == "timeline":
        return timeline_from_dict(data)
    if kind == "hierarchy":
        return hierarchy_from_dict(data)
    raise ModelError("E_MODEL", f"'type' must be 'timeline' or 'hierarchy', got {kind!r}")


def _plain(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, Group):
        return {
            "kind": value.kind,
            "label": value.label,
            "start_step": value.start_step,
            "end_step": value.end_step,
            "level": value.level,
            "sections": [_plain(s) for s in value.sections],
            "participants": list(value.participants),
        }
    if is_dataclass(value) and not isinstance(value, type):
        result = {}
        for f in fields(value):
            item = getattr(value, f.name)
            if f.name == "owner":
                item = None if item is None else {"kind": item.kind, "label": item.label, "start_step": item.start_step}
                result[f.name] = item
                continue
            result[f.name] = _plain(item)
        return result
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    if isinstance(value, Mapping):
        return {str(key): _plain(item) for key, item in value.items()}
    return value


def layout_to_dict(layout: Layout) -> Dict[str, Any]:
    kind = "timeline" if isinstance(layout, TimelineLayout) else "hierarchy"
    payload = {"type": kind}
    payload.update(_plain(layout))
    return payload
