"""Dependency graph diagrams: SVG (laid out with networkx) or Graphviz DOT.

Edges point from a dependency to the model that consumes it ("feeds into"),
so data flows left to right.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from xml.sax.saxutils import escape, quoteattr

import networkx as nx

from arnab.engine.transform.graph import plan
from arnab.engine.transform.models import DependencyGraph, Materialization

logger = logging.getLogger("arnab.visualize")

FILL_COLORS = {
    Materialization.TABLE: "#dbeafe",
    Materialization.VIEW: "#dcfce7",
}
STROKE_COLOR = "#334155"

NODE_HEIGHT = 36
CHAR_WIDTH = 7.5
NODE_PADDING = 24
COLUMN_GAP = 80
ROW_GAP = 24
MARGIN = 20


@dataclass(frozen=True)
class DiagramNode:
    id: str
    label: str
    materialization: Materialization
    layer: int


@dataclass(frozen=True)
class DiagramEdge:
    source: str  # the dependency
    target: str  # the model depending on it


@dataclass
class Diagram:
    nodes: list[DiagramNode] = field(default_factory=list)
    edges: list[DiagramEdge] = field(default_factory=list)

    def to_networkx(self) -> nx.DiGraph:
        g = nx.DiGraph()
        for node in self.nodes:
            g.add_node(node.id, layer=node.layer, label=node.label)
        for edge in self.edges:
            g.add_edge(edge.source, edge.target)
        return g


def build_diagram(graph: DependencyGraph) -> Diagram:
    """Convert a dependency graph into labeled nodes and dependency -> dependent edges."""
    stages = plan(graph).stages
    diagram = Diagram()
    for layer, stage in enumerate(stages):
        for name in stage:
            model = graph.model(name)
            diagram.nodes.append(
                DiagramNode(
                    id=name,
                    label=f"{name} ({model.materialization.value})",
                    materialization=model.materialization,
                    layer=layer,
                )
            )
    for dependent, dependency in sorted(
        graph.edges, key=lambda e: (graph.models[e[1]].identity, graph.models[e[0]].identity)
    ):
        diagram.edges.append(
            DiagramEdge(source=graph.models[dependency].identity, target=graph.models[dependent].identity)
        )
    return diagram


def layout(diagram: Diagram) -> dict[str, tuple[float, float]]:
    """Pixel centre of each node; one column per layer, left to right."""
    if not diagram.nodes:
        return {}
    g = diagram.to_networkx()
    raw = nx.multipartite_layout(g, subset_key="layer", align="vertical")

    node_width = _node_width(diagram)
    xs = [float(p[0]) for p in raw.values()]
    ys = [float(p[1]) for p in raw.values()]
    n_layers = max(n.layer for n in diagram.nodes) + 1
    n_rows = max(sum(1 for n in diagram.nodes if n.layer == layer) for layer in range(n_layers))
    x_span = (max(xs) - min(xs)) or 1.0
    y_span = (max(ys) - min(ys)) or 1.0
    width = (n_layers - 1) * (node_width + COLUMN_GAP)
    height = (n_rows - 1) * (NODE_HEIGHT + ROW_GAP)

    positions = {}
    for name, (x, y) in raw.items():
        px = MARGIN + node_width / 2 + (float(x) - min(xs)) / x_span * width
        # networkx puts y up; SVG puts y down
        py = MARGIN + NODE_HEIGHT / 2 + (max(ys) - float(y)) / y_span * height
        positions[name] = (round(px, 1), round(py, 1))
    return positions


def _node_width(diagram: Diagram) -> float:
    longest = max((len(n.label) for n in diagram.nodes), default=0)
    return longest * CHAR_WIDTH + NODE_PADDING


def render_svg(diagram: Diagram) -> str:
    """Render the diagram as a standalone SVG document."""
    positions = layout(diagram)
    node_width = _node_width(diagram)
    if positions:
        width = max(x for x, _ in positions.values()) + node_width / 2 + MARGIN
        height = max(y for _, y in positions.values()) + NODE_HEIGHT / 2 + MARGIN
    else:
        width = height = 2 * MARGIN

    lines = [
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{width:.0f}" height="{height:.0f}" '
        f'viewBox="0 0 {width:.0f} {height:.0f}" font-family="monospace" font-size="12">',
        "  <defs>",
        '    <marker id="arrow" viewBox="0 0 10 10" refX="10" refY="5" '
        'markerWidth="8" markerHeight="8" orient="auto-start-reverse">',
        f'      <path d="M 0 0 L 10 5 L 0 10 z" fill="{STROKE_COLOR}"/>',
        "    </marker>",
        "  </defs>",
    ]

    for edge in diagram.edges:
        sx, sy = positions[edge.source]
        tx, ty = positions[edge.target]
        lines.append(
            f'  <line class="edge" x1="{sx + node_width / 2:.1f}" y1="{sy:.1f}" '
            f'x2="{tx - node_width / 2:.1f}" y2="{ty:.1f}" stroke="{STROKE_COLOR}" '
            f'marker-end="url(#arrow)" data-source={quoteattr(edge.source)} data-target={quoteattr(edge.target)}/>'
        )

    for node in diagram.nodes:
        x, y = positions[node.id]
        lines.append(f'  <g class="node" id={quoteattr(node.id)}>')
        lines.append(
            f'    <rect x="{x - node_width / 2:.1f}" y="{y - NODE_HEIGHT / 2:.1f}" '
            f'width="{node_width:.1f}" height="{NODE_HEIGHT}" rx="6" '
            f'fill="{FILL_COLORS[node.materialization]}" stroke="{STROKE_COLOR}"/>'
        )
        lines.append(
            f'    <text x="{x:.1f}" y="{y:.1f}" text-anchor="middle" '
            f'dominant-baseline="central">{escape(node.label)}</text>'
        )
        lines.append("  </g>")

    lines.append("</svg>")
    return "\n".join(lines) + "\n"


def _dot_quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def render_dot(diagram: Diagram) -> str:
    """Render the diagram as a Graphviz ``digraph``."""
    lines = [
        "digraph models {",
        "  rankdir=LR;",
        '  node [shape=box, style="rounded,filled"];',
    ]
    for node in diagram.nodes:
        lines.append(
            f"  {_dot_quote(node.id)} [label={_dot_quote(node.label)}, "
            f"fillcolor={_dot_quote(FILL_COLORS[node.materialization])}];"
        )
    for edge in diagram.edges:
        lines.append(f"  {_dot_quote(edge.source)} -> {_dot_quote(edge.target)};")
    lines.append("}")
    return "\n".join(lines) + "\n"


def render(graph: DependencyGraph, output_path: Path) -> Path:
    """Write the graph diagram to ``output_path``.

    ``.dot`` and ``.gv`` files get Graphviz source; anything else gets SVG.
    """
    output_path = Path(output_path)
    diagram = build_diagram(graph)
    if output_path.suffix.lower() in (".dot", ".gv"):
        content = render_dot(diagram)
    else:
        content = render_svg(diagram)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(content, encoding="utf-8")
    logger.info("Wrote diagram with %d node(s) to %s", len(diagram.nodes), output_path)
    return output_path
