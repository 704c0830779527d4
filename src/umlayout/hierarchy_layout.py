"""Hierarchical layout: grid placement per container level, straightening, ports and routing."""
from __future__ import annotations

import logging
import math
from collections import Counter, deque
from dataclasses import dataclass
from typing import Deque, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .geometry import (
    Point,
    Rect,
    clip_to_circle,
    clip_to_rect,
    cubic_midpoint,
    segment_hits_rect,
    text_lines,
    union_bounds,
)
from .hierarchy import Component, ComponentKind, Direction, HierarchyModel, Note, Relationship
from .theme import DEFAULT_HIERARCHY_THEME, HierarchyTheme

logger = logging.getLogger(__name__)

Arena = Dict[str, Rect]
GridPosition = Tuple[int, int]

_FAN_SPREAD = 1.5
_STRAIGHTEN_MAX_ITERATIONS = 50
_STRAIGHTEN_EPSILON = 0.1
_PROXY_DISTANCE = 10000.0


@dataclass(frozen=True)
class ComponentLayout:
    component: Component
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class RelationshipLayout:
    relationship: Relationship
    path: Tuple[Point, ...] = ()
    label_position: Optional[Point] = None


@dataclass(frozen=True)
class NoteLayout:
    note: Note
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class HierarchyLayout:
    width: float
    height: float
    components: Tuple[ComponentLayout, ...] = ()
    relationships: Tuple[RelationshipLayout, ...] = ()
    notes: Tuple[NoteLayout, ...] = ()


@dataclass(frozen=True)
class LevelEdge:
    """A relationship lifted to the two siblings that contain its endpoints."""

    source: str
    target: str
    direction: Direction


def _js_round(value: float) -> int:
    return math.floor(value + 0.5)


def shift_subtree(
    arena: Mapping[str, Rect],
    children: Mapping[str, Sequence[str]],
    root: str,
    dx: float,
    dy: float,
) -> Arena:
    """Return a copy of ``arena`` with ``root`` and all of its placed descendants moved."""
    shifted = dict(arena)
    pending = [root]
    while pending:
        name = pending.pop()
        rect = shifted.get(name)
        if rect is None:
            continue
        shifted[name] = rect.shifted(dx, dy)
        pending.extend(children.get(name, ()))
    return shifted


def assign_grid(names: Sequence[str], edges: Sequence[LevelEdge]) -> Dict[str, GridPosition]:
    """Place sibling nodes on an integer grid.

    ``names`` must be in declaration order; ties are broken by that order. The
    result is normalised so the smallest row and column are zero and no two
    nodes share a cell.
    """
    order = {name: idx for idx, name in enumerate(names)}
    grid: Dict[str, List[int]] = {}

    def occupied(row: int, col: int) -> bool:
        return any(pos[0] == row and pos[1] == col for pos in grid.values())

    if edges:
        adjacency: Dict[str, List[Tuple[str, Direction]]] = {}
        for edge in edges:
            adjacency.setdefault(edge.source, []).append((edge.target, edge.direction))
            adjacency.setdefault(edge.target, []).append((edge.source, edge.direction.reversed()))

        targets = {edge.target for edge in edges}
        connected = targets | {edge.source for edge in edges}
        roots = [name for name in names if name not in targets]

        queue: Deque[str] = deque()
        start = roots[0] if roots else edges[0].source
        grid[start] = [0, 0]
        queue.append(start)
        for root in roots:
            if root not in grid and root in connected:
                col = 0
                while occupied(0, col):
                    col += 1
                grid[root] = [0, col]
                queue.append(root)

        visited: Set[str] = set()
        while queue:
            current = queue.popleft()
            if current in visited:
                continue
            visited.add(current)
            row, col = grid[current]

            by_direction: Dict[Direction, List[str]] = {}
            for target, direction in adjacency.get(current, ()):
                if target not in grid:
                    by_direction.setdefault(direction, []).append(target)

            for direction, group in by_direction.items():
                group.sort(key=lambda name: order.get(name, 0))
                for idx, target in enumerate(group):
                    offset = 0.0 if len(group) == 1 else idx - (len(group) - 1) / 2
                    fan = _js_round(offset * _FAN_SPREAD)
                    new_row, new_col = row, col
                    if direction == Direction.DOWN:
                        new_row, new_col = row + 1, col + fan
                    elif direction == Direction.UP:
                        new_row, new_col = row - 1, col + fan
                    elif direction == Direction.RIGHT:
                        new_row, new_col = row + fan, col + 1
                    else:
                        new_row, new_col = row + fan, col - 1
                    while occupied(new_row, new_col):
                        if direction.is_vertical:
                            new_col += 1
                        else:
                            new_row += 1
                    grid[target] = [new_row, new_col]
                    queue.append(target)

    leftovers = [name for name in names if name not in grid]
    if leftovers:
        start_row = max((pos[0] for pos in grid.values()), default=-1) + 1
        cols = math.ceil(math.sqrt(len(leftovers)))
        for idx, name in enumerate(leftovers):
            grid[name] = [start_row + idx // cols, idx % cols]

    # Center a parent over the children it points down at.
    for name in names:
        child_cols = [
            grid[edge.target][1]
            for edge in edges
            if edge.source == name and edge.direction == Direction.DOWN and edge.target in grid
        ]
        if child_cols and name in grid:
            grid[name][1] = _js_round(sum(child_cols) / len(child_cols))

    min_row = min(pos[0] for pos in grid.values())
    min_col = min(pos[1] for pos in grid.values())
    for pos in grid.values():
        pos[0] -= min_row
        pos[1] -= min_col

    taken: Set[GridPosition] = set()
    for name in sorted(grid, key=lambda n: (grid[n][0], grid[n][1])):
        pos = grid[name]
        while (pos[0], pos[1]) in taken:
            pos[1] += 1
        taken.add((pos[0], pos[1]))

    return {name: (pos[0], pos[1]) for name, pos in grid.items()}


class _Solver:
    """Scratch state for one layout call."""

    def __init__(self, model: HierarchyModel, theme: HierarchyTheme, avoid_obstacles: bool = False) -> None:
        self.model = model
        self.theme = theme
        self.avoid_obstacles = avoid_obstacles
        self.components: Dict[str, Component] = {}
        for component in model.components:
            self.components.setdefault(component.name, component)
        self.children: Dict[str, List[str]] = {}
        for component in self.components.values():
            parent = self.parent_of(component.name)
            if parent is not None:
                self.children.setdefault(parent, []).append(component.name)
        self.arena: Arena = {}
        self.note_rects: Dict[str, Rect] = {}

    def parent_of(self, name: str) -> Optional[str]:
        component = self.components.get(name)
        if component is None or component.parent_id is None:
            return None
        if component.parent_id not in self.components:
            return None
        return component.parent_id

    def is_port(self, name: str) -> bool:
        component = self.components.get(name)
        return component is not None and component.kind.is_port

    def content_children(self, name: str) -> List[str]:
        return [c for c in self.children.get(name, ()) if not self.is_port(c)]

    def port_children(self, name: str) -> List[str]:
        return [c for c in self.children.get(name, ()) if self.is_port(c)]

    def descendants(self, name: str) -> List[str]:
        found: List[str] = []
        for child in self.children.get(name, ()):
            found.append(child)
            found.extend(self.descendants(child))
        return found

    def ancestor_path(self, name: str) -> List[str]:
        path: List[str] = []
        seen = {name}
        parent = self.parent_of(name)
        while parent is not None and parent not in seen:
            path.append(parent)
            seen.add(parent)
            parent = self.parent_of(parent)
        path.reverse()
        return path

    def lowest_common_parent(self, first: str, second: str) -> Optional[str]:
        common = None
        for a, b in zip(self.ancestor_path(first), self.ancestor_path(second)):
            if a != b:
                break
            common = a
        return common

    def ancestor_under(self, name: str, ancestor: Optional[str]) -> str:
        current = name
        for _ in range(len(self.components) + 1):
            parent = self.parent_of(current)
            if parent == ancestor or parent is None:
                return current
            current = parent
        return current

    def rect_for(self, name: str) -> Optional[Rect]:
        rect = self.arena.get(name)
        if rect is None:
            rect = self.note_rects.get(name)
        return rect

    # -- measurement and grid ------------------------------------------

    def measure(self, name: str) -> Tuple[float, float]:
        theme = self.theme
        component = self.components[name]
        label = component.display_label
        line_count = len(text_lines(label))
        if component.kind == ComponentKind.INTERFACE:
            diameter = theme.interface_radius * 2
            width = max(diameter, theme.measurer.text_width(label, 8.0))
            return width, diameter + line_count * 20

        content = self.content_children(name)
        if content:
            inner_width, inner_height = self.layout_level(content, 0.0, 0.0)
            return (
                inner_width + theme.package_padding * 2,
                inner_height + theme.package_padding * 2 + theme.label_band,
            )
        width = max(theme.component_width, theme.measurer.text_width(label, 9.0) + 20)
        height = max(theme.component_height, line_count * 20 + 20)
        return width, height

    def level_edges(self, names: Sequence[str]) -> List[LevelEdge]:
        owner: Dict[str, str] = {}
        for name in names:
            owner[name] = name
            for descendant in self.descendants(name):
                owner[descendant] = name

        edges: List[LevelEdge] = []
        seen: Set[Tuple[str, str]] = set()
        for relationship in self.model.relationships:
            source = owner.get(relationship.source)
            target = owner.get(relationship.target)
            if source is None or target is None or source == target:
                continue
            if (source, target) in seen:
                continue
            seen.add((source, target))
            edges.append(LevelEdge(source, target, relationship.resolved_direction))
        return edges

    def layout_level(self, names: Sequence[str], start_x: float, start_y: float) -> Tuple[float, float]:
        """Lay out one set of siblings with its top-left corner at (start_x, start_y)."""
        if not names:
            return 0.0, 0.0
        theme = self.theme
        sizes = {name: self.measure(name) for name in names}
        grid = assign_grid(names, self.level_edges(names))

        max_row = max(row for row, _ in grid.values())
        max_col = max(col for _, col in grid.values())
        col_widths = [0.0] * (max_col + 1)
        row_heights = [0.0] * (max_row + 1)
        for name, (row, col) in grid.items():
            width, height = sizes[name]
            col_widths[col] = max(col_widths[col], width)
            row_heights[row] = max(row_heights[row], height)

        col_starts = [start_x]
        for col in range(1, max_col + 1):
            col_starts.append(col_starts[col - 1] + col_widths[col - 1] + theme.gap_x)
        row_starts = [start_y]
        for row in range(1, max_row + 1):
            row_starts.append(row_starts[row - 1] + row_heights[row - 1] + theme.gap_y)

        logger.debug(
            "grid for %s: col widths=%s col starts=%s row heights=%s row starts=%s",
            list(names),
            col_widths,
            col_starts,
            row_heights,
            row_starts,
        )

        for name in names:
            row, col = grid[name]
            width, height = sizes[name]
            x = col_starts[col] + (col_widths[col] - width) / 2
            y = row_starts[row] + (row_heights[row] - height) / 2
            self.arena[name] = Rect(x, y, width, height)

        for name in names:
            rect = self.arena[name]
            for child in self.content_children(name):
                self.arena = shift_subtree(
                    self.arena,
                    self.children,
                    child,
                    rect.x + theme.package_padding,
                    rect.y + theme.label_band + theme.package_padding,
                )

        total_width = col_starts[max_col] + col_widths[max_col] - start_x
        total_height = row_starts[max_row] + row_heights[max_row] - start_y
        return total_width, total_height

    # -- straightening ------------------------------------------------

    def straighten(self, max_iterations: int = _STRAIGHTEN_MAX_ITERATIONS) -> int:
        vertical = [r for r in self.model.relationships if r.resolved_direction.is_vertical]
        if not vertical:
            return 0
        outgoing = Counter(r.source for r in vertical)
        incoming = Counter(r.target for r in vertical)

        iterations = 0
        for _ in range(max_iterations):
            iterations += 1
            shifts: Dict[str, List[float]] = {}
            for relationship in vertical:
                source = self.arena.get(relationship.source)
                target = self.arena.get(relationship.target)
                if source is None or target is None:
                    continue
                if abs(target.y - source.y) < 10:
                    continue
                error = target.center_x - source.center_x
                if abs(error) < _STRAIGHTEN_EPSILON:
                    continue
                if outgoing[relationship.source] > 1 or incoming[relationship.target] > 1:
                    continue

                common = self.lowest_common_parent(relationship.source, relationship.target)
                moved_source = self.ancestor_under(relationship.source, common)
                moved_target = self.ancestor_under(relationship.target, common)
                if moved_source == moved_target:
                    continue
                source_shift = shifts.setdefault(moved_source, [0.0, 0.0])
                target_shift = shifts.setdefault(moved_target, [0.0, 0.0])
                source_shift[0] += error / 2
                source_shift[1] += 1
                target_shift[0] -= error / 2
                target_shift[1] += 1

            if not shifts:
                break
            moved = False
            for name, (total, count) in shifts.items():
                average = total / count
                if abs(average) < _STRAIGHTEN_EPSILON or name not in self.arena:
                    continue
                self.arena = shift_subtree(self.arena, self.children, name, average, 0.0)
                moved = True
            if not moved:
                break
        return iterations

    # -- notes and ports ----------------------------------------------

    def note_size(self, note: Note) -> Tuple[float, float]:
        theme = self.theme
        width = max(theme.note_min_width, theme.measurer.text_width(note.text, 8.0) + 20)
        return width, len(text_lines(note.text)) * 20 + 20

    def anchor_of(self, note: Note) -> Optional[str]:
        if note.linked_to is None:
            return None
        if note.linked_to in self.components:
            return note.linked_to
        for component in self.components.values():
            if component.alias == note.linked_to:
                return component.name
        return None

    def place_notes(self, indexed: Iterable[Tuple[int, Note]], floating_y: float) -> None:
        margin = self.theme.note_margin
        for idx, note in indexed:
            width, height = self.note_size(note)
            if note.linked_to is None:
                rect = Rect(0.0, floating_y + idx * 60, width, height)
            else:
                anchor = self.arena.get(self.anchor_of(note) or "")
                if anchor is None:
                    logger.debug("dropping note %s: unknown anchor %r", note.id, note.linked_to)
                    continue
                if note.position == "left":
                    rect = Rect(anchor.x - width - margin, anchor.y + (anchor.height - height) / 2, width, height)
                elif note.position == "top":
                    rect = Rect(anchor.x + (anchor.width - width) / 2, anchor.y - height - margin, width, height)
                elif note.position == "bottom":
                    rect = Rect(anchor.x + (anchor.width - width) / 2, anchor.bottom + margin, width, height)
                else:
                    rect = Rect(anchor.right + margin, anchor.y + (anchor.height - height) / 2, width, height)
            self.note_rects[note.key] = rect

    def place_ports(self, container: str) -> None:
        theme = self.theme
        parent = self.arena.get(container)
        ports = self.port_children(container)
        if parent is None or not ports:
            return
        inside = set(self.descendants(container)) | {container}

        sides: Dict[str, List[str]] = {"left": [], "right": [], "top": [], "bottom": []}
        for port in ports:
            total_x = total_y = 0.0
            count = 0
            for relationship in self.model.relationships:
                if port not in (relationship.source, relationship.target):
                    continue
                other = relationship.target if relationship.source == port else relationship.source
                if other in inside:
                    continue
                rect = self.rect_for(other)
                if rect is None:
                    continue
                total_x += rect.center_x
                total_y += rect.y + rect.height / 2
                count += 1

            if count == 0:
                side = "right" if self.components[port].kind == ComponentKind.PORTOUT else "left"
            else:
                dx = total_x / count - parent.center_x
                dy = total_y / count - (parent.y + parent.height / 2)
                if abs(dx) >= abs(dy):
                    side = "right" if dx > 0 else "left"
                else:
                    side = "bottom" if dy > 0 else "top"
            sides[side].append(port)

        size = theme.port_size
        half = size / 2
        for side in ("left", "right", "top", "bottom"):
            members = sides[side]
            if not members:
                continue
            span = parent.height if side in ("left", "right") else parent.width
            step = span / (len(members) + 1)
            for idx, port in enumerate(members):
                along = step * (idx + 1) - half
                if side == "left":
                    rect = Rect(parent.x - half, parent.y + along, size, size)
                elif side == "right":
                    rect = Rect(parent.right - half, parent.y + along, size, size)
                elif side == "top":
                    rect = Rect(parent.x + along, parent.y - half, size, size)
                else:
                    rect = Rect(parent.x + along, parent.bottom - half, size, size)
                self.arena[port] = rect

    # -- routing ------------------------------------------------------

    def find_obstacle(self, start: Point, end: Point, exclude: Set[str]) -> Optional[Rect]:
        nearest: Optional[Rect] = None
        best = math.inf
        for name, rect in self.arena.items():
            if name in exclude or not segment_hits_rect(start, end, rect):
                continue
            cx, cy = rect.center
            distance = (cx - start[0]) ** 2 + (cy - start[1]) ** 2
            if distance < best:
                best = distance
                nearest = rect
        return nearest

    def clip(self, name: str, rect: Rect, toward: Point, clearance: float) -> Point:
        component = self.components.get(name)
        if component is not None and component.kind == ComponentKind.INTERFACE:
            return clip_to_circle(rect.center, toward, self.theme.interface_radius + clearance)
        return clip_to_rect(rect.center, toward, rect, clearance)

    def route(self, relationship: Relationship) -> RelationshipLayout:
        theme = self.theme
        source_rect = self.rect_for(relationship.source)
        target_rect = self.rect_for(relationship.target)
        if source_rect is None or target_rect is None:
            return RelationshipLayout(relationship)

        tail_gap = theme.line_clearance
        head_gap = theme.arrow_clearance if relationship.show_arrow_head else theme.line_clearance
        source_center = source_rect.center
        target_center = target_rect.center
        start = self.clip(relationship.source, source_rect, target_center, tail_gap)
        end = self.clip(relationship.target, target_rect, source_center, head_gap)
        path: Tuple[Point, ...] = (start, end)
        label = ((start[0] + end[0]) / 2, (start[1] + end[1]) / 2 - theme.label_offset)

        if not self.avoid_obstacles:
            return RelationshipLayout(relationship, path, label)

        exclude = {relationship.source, relationship.target}
        exclude.update(self.ancestor_path(relationship.source))
        exclude.update(self.ancestor_path(relationship.target))
        obstacle = self.find_obstacle(start, end, exclude)
        if obstacle is None:
            return RelationshipLayout(relationship, path, label)

        dx = target_center[0] - source_center[0]
        dy = target_center[1] - source_center[1]
        if relationship.direction is not None:
            horizontal = not relationship.direction.is_vertical
        else:
            horizontal = abs(dx) > abs(dy)

        if horizontal:
            if dy >= 0:
                detour_y = obstacle.bottom + 40
                proxy = (0.0, _PROXY_DISTANCE)
            else:
                detour_y = obstacle.y - 40
                proxy = (0.0, -_PROXY_DISTANCE)
            control1 = (source_center[0] + dx * 0.2, detour_y)
            control2 = (source_center[0] + dx * 0.8, detour_y)
        else:
            if dx >= 0:
                detour_x = obstacle.right + 80
                proxy = (_PROXY_DISTANCE, 0.0)
            else:
                detour_x = obstacle.x - 80
                proxy = (-_PROXY_DISTANCE, 0.0)
            control1 = (detour_x, source_center[1] + dy * 0.2)
            control2 = (detour_x, source_center[1] + dy * 0.8)

        start = self.clip(
            relationship.source,
            source_rect,
            (source_center[0] + proxy[0], source_center[1] + proxy[1]),
            tail_gap,
        )
        end = self.clip(
            relationship.target,
            target_rect,
            (target_center[0] + proxy[0], target_center[1] + proxy[1]),
            head_gap,
        )
        mid_x, mid_y = cubic_midpoint(start, control1, control2, end)
        return RelationshipLayout(
            relationship, (start, control1, control2, end), (mid_x, mid_y - theme.label_offset)
        )


def calculate_layout(
    model: HierarchyModel,
    theme: HierarchyTheme = DEFAULT_HIERARCHY_THEME,
    *,
    avoid_obstacles: bool = False,
    max_straighten_iterations: int = _STRAIGHTEN_MAX_ITERATIONS,
) -> HierarchyLayout:
    """Compute the geometry of a hierarchy model.

    Components are placed level by level starting from the roots of the parent
    forest. Relationships whose endpoints cannot be resolved get an empty path
    and notes anchored to unknown components are dropped. With
    `avoid_obstacles` a connector that would cross an unrelated box is bent
    into a cubic curve around it.
    """
    solver = _Solver(model, theme, avoid_obstacles)
    roots = [name for name in solver.components if solver.parent_of(name) is None]
    solver.layout_level(roots, 0.0, 0.0)
    iterations = solver.straighten(max_straighten_iterations)
    logger.debug("straightening finished after %d iteration(s)", iterations)

    port_notes = []
    other_notes = []
    for idx, note in enumerate(model.notes):
        if solver.is_port(solver.anchor_of(note) or ""):
            port_notes.append((idx, note))
        else:
            other_notes.append((idx, note))

    bounds = union_bounds(solver.arena.values())
    floating_y = (max(bounds[3], 0.0) if bounds else 0.0) + 50
    solver.place_notes(other_notes, floating_y)
    for name in solver.components:
        solver.place_ports(name)
    solver.place_notes(port_notes, floating_y)

    placed_notes = [note for note in model.notes if note.key in solver.note_rects]
    bounds = union_bounds(
        list(solver.arena.values()) + [solver.note_rects[note.key] for note in placed_notes]
    )
    if bounds is None:
        return HierarchyLayout(width=theme.padding * 2, height=theme.padding * 2)

    offset_x = theme.padding - bounds[0]
    offset_y = theme.padding - bounds[1]
    solver.arena = {name: rect.shifted(offset_x, offset_y) for name, rect in solver.arena.items()}
    solver.note_rects = {
        key: rect.shifted(offset_x, offset_y) for key, rect in solver.note_rects.items()
    }
    max_x = bounds[2] + offset_x
    max_y = bounds[3] + offset_y

    relationships = [solver.route(r) for r in model.relationships]

    # Detours may bulge past the padded frame.
    points = [p for r in relationships for p in r.path]
    extra_x = max(0.0, theme.padding - min((p[0] for p in points), default=theme.padding))
    extra_y = max(0.0, theme.padding - min((p[1] for p in points), default=theme.padding))
    max_x = max([max_x] + [p[0] for p in points])
    max_y = max([max_y] + [p[1] for p in points])
    if extra_x or extra_y:
        solver.arena = {n: r.shifted(extra_x, extra_y) for n, r in solver.arena.items()}
        solver.note_rects = {k: r.shifted(extra_x, extra_y) for k, r in solver.note_rects.items()}
        relationships = [_shift_route(r, extra_x, extra_y) for r in relationships]
        max_x += extra_x
        max_y += extra_y

    components = tuple(
        ComponentLayout(c, r.x, r.y, r.width, r.height)
        for c, r in ((solver.components[n], solver.arena[n]) for n in solver.components if n in solver.arena)
    )
    notes = tuple(
        NoteLayout(note, rect.x, rect.y, rect.width, rect.height)
        for note, rect in ((n, solver.note_rects[n.key]) for n in placed_notes)
    )
    return HierarchyLayout(
        width=max_x + theme.padding,
        height=max_y + theme.padding,
        components=components,
        relationships=tuple(relationships),
        notes=notes,
    )


def _shift_route(layout: RelationshipLayout, dx: float, dy: float) -> RelationshipLayout:
    label = layout.label_position
    if label is not None:
        label = (label[0] + dx, label[1] + dy)
    return RelationshipLayout(
        layout.relationship,
        tuple((x + dx, y + dy) for x, y in layout.path),
        label,
    )
