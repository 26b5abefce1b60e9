from sqlowser.relationship_graph import build_relationship_graph
from conftest import make_table


def _shop_tables():
    users = make_table("users", [("id", "INTEGER"), ("name", "TEXT")], ("id",))
    orders = make_table(
        "orders",
        [("id", "INTEGER"), ("user_id", "INTEGER"), ("total", "REAL")],
        ("id",),
        (("user_id", "users", "id"),),
    )
    return [users, orders]


def test_graph_has_sorted_nodes_and_edges() -> None:
    graph = build_relationship_graph(_shop_tables())

    assert [node.name for node in graph.nodes] == ["orders", "users"]
    assert len(graph.edges) == 1
    edge = graph.edges[0]
    assert graph.nodes[edge.source].name == "orders"
    assert graph.nodes[edge.target].name == "users"
    assert (edge.source_column, edge.target_column) == ("user_id", "id")
    assert graph.dropped == ()


def test_graph_is_independent_of_input_order() -> None:
    tables = _shop_tables()
    assert build_relationship_graph(tables) == build_relationship_graph(list(reversed(tables)))


def test_node_marks_key_columns() -> None:
    graph = build_relationship_graph(_shop_tables())
    orders = graph.node("orders")
    assert orders.primary_keys == frozenset({"id"})
    assert orders.foreign_key_columns == frozenset({"user_id"})


def test_outgoing_and_incoming_edges() -> None:
    graph = build_relationship_graph(_shop_tables())
    orders = graph.index_of("orders")
    users = graph.index_of("users")
    assert graph.outgoing(orders) == graph.edges
    assert graph.incoming(users) == graph.edges
    assert graph.outgoing(users) == ()


def test_edges_to_unknown_tables_or_columns_are_dropped() -> None:
    tables = _shop_tables() + [
        make_table(
            "reviews",
            [("id", "INTEGER"), ("product_id", "INTEGER"), ("user_id", "INTEGER")],
            ("id",),
            (("product_id", "products", "id"), ("user_id", "users", "uid")),
        )
    ]

    graph = build_relationship_graph(tables)

    assert len(graph.edges) == 1
    assert len(graph.dropped) == 2
    assert "unknown target table 'products'" in graph.dropped[0]
    assert "unknown column users.uid" in graph.dropped[1]


def test_edge_without_target_column_is_dropped() -> None:
    tables = [
        make_table("tags", [("a", "INTEGER"), ("b", "INTEGER")], ("a", "b")),
        make_table("notes", [("tag", "INTEGER")], (), (("tag", "tags", None),)),
    ]
    graph = build_relationship_graph(tables)
    assert graph.edges == ()
    assert "no target column" in graph.dropped[0]


def test_self_reference_is_a_self_loop() -> None:
    staff = make_table(
        "staff",
        [("id", "INTEGER"), ("manager_id", "INTEGER")],
        ("id",),
        (("manager_id", "staff", "id"),),
    )
    graph = build_relationship_graph([staff])
    assert graph.edges[0].is_self_loop


def test_graph_from_database(gateway) -> None:
    graph = build_relationship_graph(gateway.list_tables())
    labels = {
        (graph.nodes[edge.source].name, graph.nodes[edge.target].name) for edge in graph.edges
    }
    assert labels == {("orders", "users"), ("staff", "staff")}
