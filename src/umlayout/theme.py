"""Pixel constants for both layout engines."""
from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Mapping, Type, TypeVar, Union

from .errors import ModelError
from .measure import CharWidthMeasurer, FontMeasurer

Measurer = Union[CharWidthMeasurer, FontMeasurer]

T = TypeVar("T", "TimelineTheme", "HierarchyTheme")

TIMELINE_COLORS: Dict[str, str] = {
    "default_stroke": "#333333",
    "default_fill": "#eeeeee",
    "actor_fill": "#f8f9fa",
    "note_fill": "#ffffcc",
    "line": "#666666",
    "text": "#000000",
}

HIERARCHY_COLORS: Dict[str, str] = {
    "default_stroke": "#5a6270",
    "default_fill": "#e8edf3",
    "interface_fill": "#ffffff",
    "note_fill": "#fff9c4",
    "note_stroke": "#e0d86e",
    "line": "#5a6270",
    "text": "#2c3e50",
    "text_light": "#7f8c9b",
    "package_fill": "#ebf0f7",
    "package_stroke": "#7b8fa8",
    "node_fill": "#ebf0f7",
    "folder_fill": "#ebf0f7",
    "frame_fill": "#ebf0f7",
    "cloud_fill": "#ebf0f7",
    "database_fill": "#ebf0f7",
    "component_icon": "#7b8fa8",
}


@dataclass(frozen=True)
class TimelineTheme:
    padding: float = 40.0
    participant_width: float = 120.0
    participant_height: float = 40.0
    participant_gap: float = 60.0
    message_gap: float = 50.0
    font_size: float = 14.0
    font_family: str = "sans-serif"
    activation_width: float = 12.0
    activation_level_offset: float = 5.0
    header_offset: float = 90.0
    step_padding: float = 10.0
    self_loop_width: float = 40.0
    self_loop_height: float = 25.0
    self_activation_nudge: float = 25.0
    min_activation_height: float = 5.0
    note_min_width: float = 60.0
    note_line_height: float = 20.0
    divider_height: float = 30.0
    delay_height: float = 40.0
    colors: Dict[str, str] = field(default_factory=lambda: dict(TIMELINE_COLORS), compare=False)
    measurer: Measurer = field(default_factory=CharWidthMeasurer, compare=False)


@dataclass(frozen=True)
class HierarchyTheme:
    padding: float = 20.0
    component_width: float = 120.0
    component_height: float = 50.0
    interface_radius: float = 10.0
    gap_x: float = 80.0
    gap_y: float = 60.0
    font_size: float = 13.0
    font_family: str = "'Segoe UI', Roboto, 'Helvetica Neue', Arial, sans-serif"
    package_padding: float = 20.0
    label_band: float = 30.0
    port_size: float = 10.0
    note_margin: float = 30.0
    note_min_width: float = 100.0
    line_clearance: float = 2.0
    arrow_clearance: float = 4.0
    label_offset: float = 10.0
    colors: Dict[str, str] = field(default_factory=lambda: dict(HIERARCHY_COLORS), compare=False)
    measurer: Measurer = field(default_factory=CharWidthMeasurer, compare=False)


DEFAULT_TIMELINE_THEME = TimelineTheme()
DEFAULT_HIERARCHY_THEME = HierarchyTheme()


def theme_from_mapping(cls: Type[T], data: Mapping[str, Any]) -> T:
    known = {f.name: f for f in fields(cls) if f.name != "measurer"}
    overrides: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in known:
            raise ModelError("E_THEME", f"unknown {cls.__name__} setting: {key}")
        if key == "colors":
            if not isinstance(value, Mapping):
                raise ModelError("E_THEME", "colors must be an object of name -> color")
            base = HIERARCHY_COLORS if cls is HierarchyTheme else TIMELINE_COLORS
            overrides[key] = {**base, **{str(k): str(v) for k, v in value.items()}}
            continue
        default = getattr(cls(), key)
        if isinstance(default, (int, float)):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ModelError("E_THEME", f"{key} must be a number")
            overrides[key] = type(default)(value)
        else:
            overrides[key] = str(value)
    return cls(**overrides)


def with_measurer(theme: T, measurer: Measurer) -> T:
    return replace(theme, measurer=measurer)
