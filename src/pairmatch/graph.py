"""Match graph construction and diagnostic exports."""

import matplotlib

matplotlib.use("Agg")

import logging
from collections.abc import Iterable
from pathlib import Path

import matplotlib.pyplot as plt
import networkx as nx
import numpy as np

from .pairs import PairKey

logger = logging.getLogger(__name__)

ADJACENCY_MATRIX_FILENAME = "PutativeAdjacencyMatrix.svg"
GRAPHVIZ_FILENAME = "putative_matches.dot"


def build_match_graph(
    view_ids: Iterable[int], matches: dict[PairKey, np.ndarray]
) -> nx.Graph:
    """Build the undirected view graph of a match set.

    Args:
        view_ids: All catalog view ids; each becomes a node, even isolated.
        matches: Putative matches keyed by canonical pair.

    Returns:
        Graph with one node per view and one edge per pair with at least
        one correspondence. Edge attribute "weight" is the match count.
    """
    graph = nx.Graph()
    graph.add_nodes_from(sorted(view_ids))
    for (i, j), corr in sorted(matches.items()):
        if len(corr) > 0:
            graph.add_edge(i, j, weight=int(len(corr)))
    return graph


def graph_statistics(graph: nx.Graph) -> dict[str, int]:
    """Connectivity summary of a match graph.

    Returns:
        Dict with "nodes", "edges", "components", "largest_component",
        and "isolated" counts.
    """
    components = list(nx.connected_components(graph))
    return {
        "nodes": graph.number_of_nodes(),
        "edges": graph.number_of_edges(),
        "components": len(components),
        "largest_component": max((len(c) for c in components), default=0),
        "isolated": nx.number_of_isolates(graph),
    }


def export_adjacency_matrix(graph: nx.Graph, output_path: str | Path, dpi: int = 100) -> None:
    """Render the pairwise adjacency matrix as an image (SVG by suffix).

    Cell (i, j) is colored by the number of putative matches of the pair;
    pairs without matches stay blank.

    Args:
        graph: Match graph.
        output_path: Output image path.
        dpi: Output resolution for raster formats.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    nodes = sorted(graph.nodes)
    n = len(nodes)
    matrix = np.zeros((n, n), dtype=float)
    if n:
        matrix = nx.to_numpy_array(graph, nodelist=nodes, weight="weight")
    masked = np.ma.masked_equal(matrix, 0)

    size = min(max(4.0, n * 0.15), 20.0)
    fig, ax = plt.subplots(1, 1, figsize=(size + 1.5, size))
    try:
        im = ax.imshow(masked, cmap="viridis", interpolation="nearest")
        fig.colorbar(im, ax=ax, label="Putative matches")
        if n <= 50:
            ax.set_xticks(range(n))
            ax.set_yticks(range(n))
            ax.set_xticklabels(nodes, fontsize=6, rotation=90)
            ax.set_yticklabels(nodes, fontsize=6)
        ax.set_xlabel("View id")
        ax.set_ylabel("View id")
        ax.set_title(f"Putative adjacency matrix ({graph.number_of_edges()} pairs)")
        fig.savefig(output_path, dpi=dpi, bbox_inches="tight", pad_inches=0.1)
    finally:
        plt.close(fig)


def export_graphviz(graph: nx.Graph, output_path: str | Path) -> None:
    """Write the match graph as a Graphviz DOT description.

    Args:
        graph: Match graph.
        output_path: Output ``.dot`` path.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    lines = ["graph putative_matches {"]
    for node in sorted(graph.nodes):
        lines.append(f'  n{node} [label="{node}"];')
    for i, j, data in sorted(graph.edges(data=True)):
        a, b = min(i, j), max(i, j)
        lines.append(f'  n{a} -- n{b} [label="{data.get("weight", 0)}"];')
    lines.append("}")

    with open(output_path, "w") as f:
        f.write("\n".join(lines) + "\n")


def export_diagnostics(graph: nx.Graph, output_dir: str | Path) -> dict[str, Path | None]:
    """Write the adjacency matrix and the Graphviz description.

    Export failures are logged and reported, never raised: the match file
    is already persisted.

    Args:
        graph: Match graph.
        output_dir: Directory the diagnostics are written to.

    Returns:
        Dict mapping "adjacency_matrix" and "graphviz" to the written path,
        or None when that export failed.
    """
    output_dir = Path(output_dir)
    exports = {
        "adjacency_matrix": (export_adjacency_matrix, output_dir / ADJACENCY_MATRIX_FILENAME),
        "graphviz": (export_graphviz, output_dir / GRAPHVIZ_FILENAME),
    }

    written: dict[str, Path | None] = {}
    for name, (export, path) in exports.items():
        try:
            export(graph, path)
            written[name] = path
            logger.info("Wrote %s to %s", name, path)
        except Exception:
            logger.exception("Failed to export %s to %s", name, path)
            written[name] = None

    stats = graph_statistics(graph)
    logger.info(
        "Match graph: %d views, %d edges, %d connected component(s), "
        "largest %d, %d isolated view(s)",
        stats["nodes"],
        stats["edges"],
        stats["components"],
        stats["largest_component"],
        stats["isolated"],
    )
    return written
