"""Public API for umlayout."""
from .errors import ModelError
from .hierarchy import HierarchyBuilder, HierarchyModel
from .hierarchy_layout import HierarchyLayout
from .hierarchy_layout import calculate_layout as layout_hierarchy
from .measure import CharWidthMeasurer, FontMeasurer
from .serialize import layout_to_dict, model_from_dict
from .theme import DEFAULT_HIERARCHY_THEME, DEFAULT_TIMELINE_THEME, HierarchyTheme, TimelineTheme
from .timeline import TimelineBuilder, TimelineModel, arrow_head_from_marker
from .timeline_layout import TimelineLayout
from .timeline_layout import calculate_layout as layout_timeline

__all__ = [
    "CharWidthMeasurer",
    "DEFAULT_HIERARCHY_THEME",
    "DEFAULT_TIMELINE_THEME",
    "FontMeasurer",
    "HierarchyBuilder",
    "HierarchyLayout",
    "HierarchyModel",
    "HierarchyTheme",
    "ModelError",
    "TimelineBuilder",
    "TimelineLayout",
    "TimelineModel",
    "TimelineTheme",
    "arrow_head_from_marker",
    "layout_hierarchy",
    "layout_timeline",
    "layout_to_dict",
    "model_from_dict",
]
