from collections import deque
from dataclasses import dataclass

from sqlowser.relationship_graph import GraphNode, RelationshipGraph


MAX_VISIBLE_COLUMNS = 8
BOX_MIN_WIDTH = 12
BOX_MAX_WIDTH = 36
BOX_GAP = 4
LAYER_GAP = 2
LABEL_GAP_DIVISOR = 8
SELF_LOOP_REACH = 2


@dataclass(frozen=True)
class NodeBox:
    name: str
    x: int
    y: int
    width: int
    height: int
    layer: int
    lines: tuple[str, ...]
    visible_columns: tuple[str, ...]

    @property
    def right(self) -> int:
        return self.x + self.width - 1

    @property
    def bottom(self) -> int:
        return self.y + self.height - 1

    @property
    def center_x(self) -> int:
        return self.x + self.width // 2

    def row_of(self, column_name: str) -> int:
        """Absolute row of a column label, or of the summary row when hidden."""
        if column_name in self.visible_columns:
            return self.y + 1 + self.visible_columns.index(column_name)
        return self.y + len(self.lines)


@dataclass(frozen=True)
class EdgeRoute:
    source: str
    target: str
    source_column: str
    target_column: str
    waypoints: tuple[tuple[int, int], ...]
    back_edge: bool = False


@dataclass(frozen=True)
class DiagramLayout:
    boxes: tuple[NodeBox, ...]
    edges: tuple[EdgeRoute, ...]
    width: int
    height: int
    layer_count: int

    def box_for(self, name: str) -> NodeBox | None:
        for box in self.boxes:
            if box.name == name:
                return box
        return None


def column_label(node: GraphNode, column_name: str) -> str:
    primary_marker = "*" if column_name in node.primary_keys else " "
    foreign_marker = "&" if column_name in node.foreign_key_columns else " "
    return f"{primary_marker}{foreign_marker} {column_name}"


def _truncate(text: str, width: int) -> str:
    if len(text) <= width:
        return text
    return text[: max(0, width - 3)] + "..."


def _box_contents(node: GraphNode) -> tuple[int, tuple[str, ...], tuple[str, ...]]:
    names = [column.name for column in node.columns]
    if len(names) > MAX_VISIBLE_COLUMNS:
        visible = names[: MAX_VISIBLE_COLUMNS - 1]
        labels = [column_label(node, name) for name in visible]
        labels.append(f"+{len(names) - len(visible)} more")
    else:
        visible = names
        labels = [column_label(node, name) for name in visible]
    longest = max([len(node.name), *(len(label) for label in labels)])
    width = min(max(longest + 4, BOX_MIN_WIDTH), BOX_MAX_WIDTH)
    lines = tuple(_truncate(label, width - 4) for label in labels)
    return width, lines, tuple(visible)


def _reaches(graph: RelationshipGraph, start: int, goal: int, live_edges: set[int]) -> bool:
    seen = {start}
    queue = deque([start])
    while queue:
        current = queue.popleft()
        if current == goal:
            return True
        for edge_index in sorted(live_edges):
            edge = graph.edges[edge_index]
            if edge.source == current and edge.target not in seen:
                seen.add(edge.target)
                queue.append(edge.target)
    return False


def _pick_back_edge(graph: RelationshipGraph, live_edges: set[int]) -> int:
    for edge_index in sorted(live_edges):
        edge = graph.edges[edge_index]
        if _reaches(graph, edge.target, edge.source, live_edges):
            return edge_index
    return min(live_edges)


def assign_layers(graph: RelationshipGraph) -> tuple[tuple[int, ...], frozenset[int]]:
    """Longest-path layering with referenced tables above their children.

    Returns the layer of every node and the indices of edges treated as
    back-edges. Runs Kahn's algorithm; when it stalls on a cycle, the first
    remaining edge in graph order that lies on a cycle is set aside.
    """
    node_count = len(graph.nodes)
    layers = [0] * node_count
    live_edges = {
        index for index, edge in enumerate(graph.edges) if not edge.is_self_loop
    }
    pending_parents = [0] * node_count
    children_edges: list[list[int]] = [[] for _ in range(node_count)]
    for edge_index in sorted(live_edges):
        edge = graph.edges[edge_index]
        pending_parents[edge.source] += 1
        children_edges[edge.target].append(edge_index)

    ready = deque(index for index in range(node_count) if pending_parents[index] == 0)
    placed = [False] * node_count
    placed_count = 0
    back_edges: set[int] = set()
    while placed_count < node_count:
        if not ready:
            back_edge = _pick_back_edge(graph, live_edges)
            live_edges.discard(back_edge)
            back_edges.add(back_edge)
            child = graph.edges[back_edge].source
            pending_parents[child] -= 1
            if pending_parents[child] == 0:
                ready.append(child)
            continue
        parent = ready.popleft()
        placed[parent] = True
        placed_count += 1
        for edge_index in children_edges[parent]:
            if edge_index not in live_edges:
                continue
            live_edges.discard(edge_index)
            child = graph.edges[edge_index].source
            layers[child] = max(layers[child], layers[parent] + 1)
            pending_parents[child] -= 1
            if pending_parents[child] == 0 and not placed[child]:
                ready.append(child)
    return tuple(layers), frozenset(back_edges)


def _route(
    source: NodeBox,
    target: NodeBox,
    source_row: int,
    target_row: int,
) -> tuple[tuple[int, int], ...]:
    if source.name == target.name:
        out_x = source.right + 1
        loop_x = out_x + SELF_LOOP_REACH
        points = [(out_x, source_row), (loop_x, source_row), (loop_x, target_row), (out_x, target_row)]
        return _compact(points)

    offset = target.center_x - source.center_x
    if offset > 0:
        start = (source.right + 1, source_row)
        end = (target.x - 1, target_row)
    elif offset < 0:
        start = (source.x - 1, source_row)
        end = (target.right + 1, target_row)
    else:
        start = (source.right + 1, source_row)
        end = (target.right + 1, target_row)

    if start[1] == end[1]:
        return (start, end)
    if offset != 0:
        return _compact([start, (end[0], start[1]), end])
    # Both anchors face right; run the vertical leg beyond the wider box.
    column = max(start[0], end[0])
    return _compact([start, (column, start[1]), (column, end[1]), end])


def _compact(points: list[tuple[int, int]]) -> tuple[tuple[int, int], ...]:
    compacted: list[tuple[int, int]] = []
    for point in points:
        if not compacted or compacted[-1] != point:
            compacted.append(point)
    return tuple(compacted)


def layout_diagram(
    graph: RelationshipGraph,
    viewport: tuple[int, int],
) -> DiagramLayout:
    viewport_width = max(0, viewport[0])
    if not graph.nodes:
        return DiagramLayout(boxes=(), edges=(), width=viewport_width, height=0, layer_count=0)

    layers, back_edges = assign_layers(graph)
    layer_count = max(layers) + 1
    contents = [_box_contents(node) for node in graph.nodes]

    members: list[list[int]] = [[] for _ in range(layer_count)]
    for index in sorted(range(len(graph.nodes)), key=lambda index: graph.nodes[index].name):
        members[layers[index]].append(index)

    required_widths = [
        sum(contents[index][0] for index in layer) + BOX_GAP * (len(layer) + 1)
        for layer in members
    ]
    diagram_width = max(viewport_width, *required_widths)

    placed: dict[int, NodeBox] = {}
    y = 0
    for layer_number, layer in enumerate(members):
        if not layer:
            continue
        free = diagram_width - sum(contents[index][0] for index in layer)
        gap = max(BOX_GAP, free // (len(layer) + 1))
        x = gap
        layer_height = 0
        longest_label = 0
        for index in layer:
            width, lines, visible = contents[index]
            node = graph.nodes[index]
            box = NodeBox(
                name=node.name,
                x=x,
                y=y,
                width=width,
                height=len(lines) + 2,
                layer=layer_number,
                lines=lines,
                visible_columns=visible,
            )
            placed[index] = box
            x += width + gap
            layer_height = max(layer_height, box.height)
            longest_label = max(
                [longest_label, *(len(column.name) for column in node.columns)]
            )
        y += layer_height + LAYER_GAP + longest_label // LABEL_GAP_DIVISOR

    routes: list[EdgeRoute] = []
    for edge_index, edge in enumerate(graph.edges):
        source = placed[edge.source]
        target = placed[edge.target]
        routes.append(
            EdgeRoute(
                source=source.name,
                target=target.name,
                source_column=edge.source_column,
                target_column=edge.target_column,
                waypoints=_route(
                    source,
                    target,
                    source.row_of(edge.source_column),
                    target.row_of(edge.target_column),
                ),
                back_edge=edge_index in back_edges,
            )
        )

    boxes = tuple(placed[index] for index in range(len(graph.nodes)))
    width = max(
        [diagram_width, *(box.right + 1 for box in boxes)]
        + [x + 1 for route in routes for x, _ in route.waypoints]
    )
    height = max(
        [box.bottom + 1 for box in boxes]
        + [y + 1 for route in routes for _, y in route.waypoints]
    )
    return DiagramLayout(
        boxes=boxes,
        edges=tuple(routes),
        width=width,
        height=height,
        layer_count=layer_count,
    )
