from dataclasses import dataclass
import logging
from typing import Sequence

from sqlowser.errors import LayoutError
from sqlowser.sqlite_driver import ColumnDescriptor, ForeignKeyEdge, TableDescriptor


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GraphNode:
    name: str
    columns: tuple[ColumnDescriptor, ...]
    primary_keys: frozenset[str]
    foreign_key_columns: frozenset[str]


@dataclass(frozen=True)
class GraphEdge:
    """A validated foreign key, as indices into `RelationshipGraph.nodes`."""

    source: int
    target: int
    source_column: str
    target_column: str

    @property
    def is_self_loop(self) -> bool:
        return self.source == self.target


@dataclass(frozen=True)
class RelationshipGraph:
    nodes: tuple[GraphNode, ...]
    edges: tuple[GraphEdge, ...]
    dropped: tuple[str, ...] = ()

    def index_of(self, name: str) -> int:
        for index, node in enumerate(self.nodes):
            if node.name == name:
                return index
        raise KeyError(name)

    def node(self, name: str) -> GraphNode:
        return self.nodes[self.index_of(name)]

    def outgoing(self, index: int) -> tuple[GraphEdge, ...]:
        return tuple(edge for edge in self.edges if edge.source == index)

    def incoming(self, index: int) -> tuple[GraphEdge, ...]:
        return tuple(edge for edge in self.edges if edge.target == index)


def _edge_sort_key(edge: ForeignKeyEdge) -> tuple[str, str, str, str]:
    return (
        edge.source_table,
        edge.source_column,
        edge.target_table,
        edge.target_column or "",
    )


def _edge_problem(
    edge: ForeignKeyEdge,
    tables: dict[str, TableDescriptor],
) -> str | None:
    source = tables.get(edge.source_table)
    if source is None:
        return f"unknown source table {edge.source_table!r}"
    if source.column(edge.source_column) is None:
        return f"unknown column {edge.source_table}.{edge.source_column}"
    target = tables.get(edge.target_table)
    if target is None:
        return f"unknown target table {edge.target_table!r}"
    if edge.target_column is None:
        return f"no target column for {edge.target_table}"
    if target.column(edge.target_column) is None:
        return f"unknown column {edge.target_table}.{edge.target_column}"
    return None


def build_relationship_graph(tables: Sequence[TableDescriptor]) -> RelationshipGraph:
    by_name: dict[str, TableDescriptor] = {}
    for table in sorted(tables, key=lambda table: table.name):
        by_name.setdefault(table.name, table)

    nodes = tuple(
        GraphNode(
            name=table.name,
            columns=table.columns,
            primary_keys=table.primary_keys,
            foreign_key_columns=frozenset(edge.source_column for edge in table.foreign_keys),
        )
        for table in by_name.values()
    )
    index = {node.name: position for position, node in enumerate(nodes)}

    candidates = sorted(
        (edge for table in by_name.values() for edge in table.foreign_keys),
        key=_edge_sort_key,
    )
    edges: list[GraphEdge] = []
    dropped: list[str] = []
    for candidate in candidates:
        problem = _edge_problem(candidate, by_name)
        if problem is not None:
            error = LayoutError(f"Dropped foreign key {candidate.label}: {problem}")
            logger.warning("%s", error)
            dropped.append(str(error))
            continue
        edges.append(
            GraphEdge(
                source=index[candidate.source_table],
                target=index[candidate.target_table],
                source_column=candidate.source_column,
                target_column=candidate.target_column or "",
            )
        )
    return RelationshipGraph(nodes=nodes, edges=tuple(edges), dropped=tuple(dropped))
