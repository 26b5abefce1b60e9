from rich.text import Text

from sqlowser.diagram_layout import DiagramLayout, EdgeRoute, NodeBox


_HORIZONTAL = "─"
_VERTICAL = "│"
_CORNER = "┼"


class DiagramCanvas:
    """Draws a `DiagramLayout` into a character grid and crops it for display."""

    def __init__(self, layout: DiagramLayout) -> None:
        self.layout = layout
        self._grid = [[" "] * layout.width for _ in range(layout.height)]
        self._styles: dict[tuple[int, int], str] = {}
        for route in layout.edges:
            self._draw_route(route)
        for box in layout.boxes:
            self._draw_box(box)

    def _put(self, x: int, y: int, char: str, style: str = "") -> None:
        if 0 <= y < len(self._grid) and 0 <= x < len(self._grid[y]):
            self._grid[y][x] = char
            if style:
                self._styles[(x, y)] = style
            else:
                self._styles.pop((x, y), None)

    def _draw_route(self, route: EdgeRoute) -> None:
        style = "yellow" if route.back_edge else "cyan"
        points = route.waypoints
        for (x1, y1), (x2, y2) in zip(points, points[1:]):
            if y1 == y2:
                for x in range(min(x1, x2), max(x1, x2) + 1):
                    self._put(x, y1, _HORIZONTAL, style)
            else:
                for y in range(min(y1, y2), max(y1, y2) + 1):
                    self._put(x1, y, _VERTICAL, style)
        for x, y in points[1:-1]:
            self._put(x, y, _CORNER, style)
        if len(points) >= 2:
            (x1, y1), (x2, y2) = points[-2], points[-1]
            if y1 == y2:
                arrow = "▶" if x2 > x1 else "◀"
            else:
                arrow = "▼" if y2 > y1 else "▲"
            self._put(x2, y2, arrow, style)

    def _draw_box(self, box: NodeBox) -> None:
        inner = box.width - 2
        title = f" {box.name} "
        if len(title) > inner:
            title = f" {box.name[: max(0, inner - 5)]}... "
        top = "┌" + title + _HORIZONTAL * (inner - len(title)) + "┐"
        self._write(box.x, box.y, top, "bold")
        for offset, line in enumerate(box.lines, start=1):
            self._write(box.x, box.y + offset, _VERTICAL + " " + line.ljust(inner - 1) + _VERTICAL)
        self._write(box.x, box.bottom, "└" + _HORIZONTAL * inner + "┘")

    def _write(self, x: int, y: int, text: str, style: str = "") -> None:
        for offset, char in enumerate(text):
            self._put(x + offset, y, char, style)

    def lines(self) -> list[str]:
        return ["".join(row) for row in self._grid]

    def crop(self, scroll: tuple[int, int], size: tuple[int, int]) -> Text:
        scroll_x, scroll_y = scroll
        width, height = size
        text = Text(no_wrap=True, overflow="crop")
        rows = self._grid[scroll_y : scroll_y + height]
        for row_index, row in enumerate(rows, start=scroll_y):
            if row_index > scroll_y:
                text.append("\n")
            for column_index in range(scroll_x, min(scroll_x + width, len(row))):
                style = self._styles.get((column_index, row_index), "")
                text.append(row[column_index], style=style or None)
        return text


def clamp_scroll(
    layout: DiagramLayout,
    scroll: tuple[int, int],
    viewport: tuple[int, int],
) -> tuple[int, int]:
    max_x = max(0, layout.width - viewport[0])
    max_y = max(0, layout.height - viewport[1])
    return min(max(scroll[0], 0), max_x), min(max(scroll[1], 0), max_y)
