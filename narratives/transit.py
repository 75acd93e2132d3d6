#!/usr/bin/env python3
"""
Which subway stations matter most? Shortest travel times, betweenness and
reach on a directed travel-time network.

Pipeline:
- Stops table (stop_id, name, lat, lon) and travel-time edge table (from, to, travel_time, route).
- Parallel edges collapse to the fastest connection per ordered stop pair.
- All-pairs shortest travel times with scipy's Dijkstra; unreachable pairs stay inf.
- Betweenness (networkx, weighted, directed) and reach (area under the
  reachable-stops-vs-time curve up to t_max), each scaled to a maximum of 1.

Usage:
    python -m narratives.transit --stops stops.csv --edges edges.csv [--t-max 60] [--seed 0]
"""
from __future__ import annotations

import argparse
import logging
import pathlib
from dataclasses import dataclass
from typing import Any

import networkx as nx
import numpy as np
import pandas as pd
from scipy.integrate import trapezoid
from scipy.sparse.csgraph import csgraph_from_dense, dijkstra

from narratives.common import require_columns, resolve_paths, setup_logging
from narratives.errors import NarrativeError, StructuralError
from narratives.plotting import PlotTheme, bar_chart, network_chart
from narratives.reporting import MarkdownReport, generated_at, persist_duckdb, write_summary

log = logging.getLogger("narratives.transit")

STOP_COLUMNS = ["stop_id", "name", "lat", "lon"]
EDGE_COLUMNS = ["from", "to", "travel_time", "route"]


@dataclass(frozen=True)
class TransitConfig:
    t_max: float = 60.0
    seed: int = 0
    top: int = 15


@dataclass
class TransitGraph:
    stops: pd.DataFrame      # positional order defines node index
    edges: pd.DataFrame      # collapsed: from, to, travel_time, route
    weights: np.ndarray      # dense n x n, inf where there is no edge

    @property
    def n(self) -> int:
        return len(self.stops)

    @property
    def stop_ids(self) -> list[str]:
        return self.stops["stop_id"].tolist()

    def to_networkx(self) -> nx.DiGraph:
        """Every stop as a node (isolated ones included), collapsed edges weighted by travel_time."""
        g = nx.DiGraph()
        g.add_nodes_from(self.stop_ids)
        g.add_weighted_edges_from(
            zip(self.edges["from"], self.edges["to"], self.edges["travel_time"].astype(float)),
            weight="travel_time",
        )
        return g

# ---------- Loading ----------

def load_stops(path: pathlib.Path) -> pd.DataFrame:
    df = pd.read_csv(path, dtype={"stop_id": str})
    require_columns(df, STOP_COLUMNS, f"stops table {path}")
    return df


def load_edges(path: pathlib.Path) -> pd.DataFrame:
    df = pd.read_csv(path, dtype={"from": str, "to": str, "route": str})
    require_columns(df, EDGE_COLUMNS, f"edge table {path}")
    return df

# ---------- Graph ----------

def collapse_parallel_edges(edges: pd.DataFrame) -> pd.DataFrame:
    """Keep the fastest edge for each ordered (from, to) pair."""
    if edges.empty:
        return edges[EDGE_COLUMNS].copy()
    ordered = edges.sort_values(["from", "to", "travel_time", "route"], kind="mergesort")
    return ordered.drop_duplicates(["from", "to"], keep="first")[EDGE_COLUMNS].reset_index(drop=True)


def build_graph(stops: pd.DataFrame, edges: pd.DataFrame) -> TransitGraph:
    require_columns(stops, STOP_COLUMNS, "stops")
    require_columns(edges, EDGE_COLUMNS, "edges")
    stops = stops.copy()
    stops["stop_id"] = stops["stop_id"].astype(str)
    if stops["stop_id"].duplicated().any():
        dupes = stops.loc[stops["stop_id"].duplicated(), "stop_id"].tolist()[:10]
        raise StructuralError(f"duplicate stop ids: {dupes}")
    stops = stops.reset_index(drop=True)

    edges = edges.copy()
    edges["from"] = edges["from"].astype(str)
    edges["to"] = edges["to"].astype(str)
    edges["travel_time"] = pd.to_numeric(edges["travel_time"], errors="coerce").astype(float)
    bad = edges["travel_time"].isna() | ~np.isfinite(edges["travel_time"]) | (edges["travel_time"] < 0)
    if bad.any():
        raise StructuralError(f"{int(bad.sum())} edge(s) with missing, infinite or negative travel time")
    known = set(stops["stop_id"])
    unknown = sorted((set(edges["from"]) | set(edges["to"])) - known)
    if unknown:
        raise StructuralError(f"edges reference {len(unknown)} unknown stop(s): {unknown[:10]}")
    loops = edges["from"] == edges["to"]
    if loops.any():
        log.debug("Dropping %d self-loop edge(s)", int(loops.sum()))
        edges = edges[~loops]

    collapsed = collapse_parallel_edges(edges)
    log.info("Collapsed %d edges to %d fastest connections between %d stops", len(edges), len(collapsed), len(stops))
    index = {sid: i for i, sid in enumerate(stops["stop_id"])}
    weights = np.full((len(stops), len(stops)), np.inf)
    for e in collapsed.itertuples(index=False):
        weights[index[e[0]], index[e[1]]] = float(e[2])
    return TransitGraph(stops=stops, edges=collapsed, weights=weights)


def shortest_path_matrix(graph: TransitGraph) -> np.ndarray:
    """dist[u, v] = fastest travel time from u to v; inf when v cannot be reached."""
    if graph.n == 0:
        return np.zeros((0, 0))
    # null_value=inf keeps zero-minute edges as real edges.
    cs = csgraph_from_dense(graph.weights, null_value=np.inf)
    dist = dijkstra(cs, directed=True)
    np.fill_diagonal(dist, 0.0)
    return dist

# ---------- Centrality ----------

def betweenness_raw(graph: TransitGraph) -> np.ndarray:
    """
    Weighted directed betweenness in stop order. Each (s, t) pair hands out one
    unit of credit split evenly over all fastest s->t paths.
    """
    if graph.n == 0:
        return np.zeros(0)
    scores = nx.betweenness_centrality(graph.to_networkx(), weight="travel_time", normalized=False)
    return np.array([scores[sid] for sid in graph.stop_ids], dtype=np.float64)


def scale_to_max(values: np.ndarray) -> np.ndarray:
    values = np.asarray(values, dtype=np.float64)
    top = float(values.max()) if values.size else 0.0
    return values / top if top > 0 else np.zeros_like(values)


def betweenness_centrality(graph: TransitGraph) -> np.ndarray:
    return scale_to_max(betweenness_raw(graph))


def reach_raw(dist: np.ndarray, t_max: float = 60.0) -> np.ndarray:
    """
    Area under n(t) on [0, t_max], n(t) = other stops reachable within t.
    Trapezoids between 0, each distinct reachable time and t_max.
    """
    if t_max < 0:
        raise ValueError("t_max must be non-negative")
    n = dist.shape[0]
    out = np.zeros(n, dtype=np.float64)
    for i in range(n):
        d = np.delete(dist[i], i)
        d = np.sort(d[np.isfinite(d) & (d <= t_max)])
        if d.size == 0:
            continue
        ts = np.concatenate(([0.0], np.unique(d), [float(t_max)]))
        counts = np.searchsorted(d, ts, side="right").astype(np.float64)
        out[i] = float(trapezoid(counts, ts))
    return out


def reach_centrality(dist: np.ndarray, t_max: float = 60.0) -> np.ndarray:
    return scale_to_max(reach_raw(dist, t_max))


def centrality_table(graph: TransitGraph, dist: np.ndarray, t_max: float = 60.0) -> pd.DataFrame:
    off_diag = ~np.eye(graph.n, dtype=bool)
    finite = np.isfinite(dist) & off_diag
    reachable = finite.sum(axis=1)
    sums = np.where(finite, dist, 0.0).sum(axis=1)
    mean_time = np.divide(sums, reachable, out=np.full(graph.n, np.nan), where=reachable > 0)
    btw_raw = betweenness_raw(graph)
    r_raw = reach_raw(dist, t_max)
    table = graph.stops[["stop_id", "name"]].copy()
    table["reachable_stops"] = reachable.astype(int)
    table["mean_travel_time"] = mean_time
    table["betweenness_raw"] = btw_raw
    table["betweenness"] = scale_to_max(btw_raw)
    table["reach_raw"] = r_raw
    table["reach"] = scale_to_max(r_raw)
    return table


def route_summary(graph: TransitGraph, table: pd.DataFrame) -> pd.DataFrame:
    """Mean scaled centrality of the stops each route serves."""
    if graph.edges.empty:
        return pd.DataFrame(columns=["route", "stops", "betweenness", "reach"])
    served = pd.concat(
        [graph.edges[["route", "from"]].rename(columns={"from": "stop_id"}), graph.edges[["route", "to"]].rename(columns={"to": "stop_id"})]
    ).drop_duplicates()
    merged = served.merge(table[["stop_id", "betweenness", "reach"]], on="stop_id", how="left")
    out = merged.groupby("route").agg(stops=("stop_id", "nunique"), betweenness=("betweenness", "mean"), reach=("reach", "mean"))
    return out.reset_index().sort_values(["reach", "route"], ascending=[False, True]).reset_index(drop=True)

# ---------- Layout ----------

def schematic_layout(graph: TransitGraph, seed: int = 0) -> np.ndarray:
    """Force-directed 2-D positions in stop order; deterministic for a seed."""
    if graph.n == 0:
        return np.zeros((0, 2))
    # Undirected and unweighted: a spring weight pulls harder, the opposite of travel time.
    pos = nx.spring_layout(graph.to_networkx().to_undirected(), weight=None, seed=seed)
    return np.array([pos[sid] for sid in graph.stop_ids], dtype=np.float64).reshape(graph.n, 2)


def layout_positions(graph: TransitGraph, seed: int = 0, use_coordinates: bool = True) -> pd.DataFrame:
    coords = graph.stops[["lon", "lat"]].apply(pd.to_numeric, errors="coerce")
    if use_coordinates and coords.notna().all().all():
        xy = coords.to_numpy(dtype=float)
    else:
        xy = schematic_layout(graph, seed=seed)
    return pd.DataFrame({"x": xy[:, 0], "y": xy[:, 1]}, index=pd.Index(graph.stop_ids, name="stop_id"))

# ---------- Report ----------

def build_transit_report(
    graph: TransitGraph,
    paths: dict[str, pathlib.Path],
    theme: PlotTheme,
    config: TransitConfig = TransitConfig(),
    db_path: pathlib.Path | None = None,
) -> dict[str, Any]:
    dist = shortest_path_matrix(graph)
    table = centrality_table(graph, dist, config.t_max)
    routes = route_summary(graph, table)
    figs = paths["figures_dir"]

    finite_pairs = np.isfinite(dist) & ~np.eye(graph.n, dtype=bool)
    pair_count = graph.n * (graph.n - 1)
    unreachable = int(pair_count - finite_pairs.sum())
    median_time = float(np.median(dist[finite_pairs])) if finite_pairs.any() else float("nan")

    by_btw = table.sort_values(["betweenness", "name"], ascending=[False, True]).head(config.top)
    by_reach = table.sort_values(["reach", "name"], ascending=[False, True]).head(config.top)

    report = MarkdownReport("Which stations hold the network together?")
    report.paragraph(
        f"The network has {graph.n} stops and {len(graph.edges)} directed connections after keeping the fastest "
        f"link between each pair. The median shortest trip is {median_time:.1f} minutes; "
        f"{unreachable} of {pair_count} ordered stop pairs cannot be reached at all and are left out of every average."
    )
    report.heading("Betweenness")
    report.paragraph("Betweenness counts how many fastest trips pass through a stop, scaled so the busiest stop scores 1.")
    fig = bar_chart(by_btw["name"], by_btw["betweenness"], figs / "transit_betweenness.svg", theme, title="Betweenness (top stops)", xlabel="scaled betweenness")
    report.figure(fig, "Betweenness").table(by_btw[["stop_id", "name", "betweenness", "betweenness_raw"]], max_rows=config.top)
    report.heading("Reach")
    report.paragraph(
        f"Reach is the area under the curve of stops reachable within t minutes for t up to {config.t_max:g}. "
        "A stop that gets to many places quickly scores higher than one that only gets there eventually."
    )
    fig = bar_chart(by_reach["name"], by_reach["reach"], figs / "transit_reach.svg", theme, title="Reach (top stops)", xlabel="scaled reach")
    report.figure(fig, "Reach").table(by_reach[["stop_id", "name", "reach", "reachable_stops", "mean_travel_time"]], max_rows=config.top)
    positions = layout_positions(graph, seed=config.seed)
    sizes = table.set_index("stop_id")["reach"]
    edges_xy = graph.edges.rename(columns={"from": "src", "to": "dst"})
    top_labels = by_reach.head(5).set_index("stop_id")["name"]
    fig = network_chart(positions, edges_xy, sizes, figs / "transit_network.svg", theme, title="Stops sized by reach", labels=top_labels)
    report.heading("Network").figure(fig, "Stops sized by reach")
    if not routes.empty:
        report.heading("Routes").table(routes, max_rows=None)
    report_path = report.write(paths["reports_dir"] / "transit.md")

    if db_path is not None:
        persist_duckdb(db_path, {"transit_stops": graph.stops, "transit_edges": graph.edges, "transit_centrality": table}, parquet_dir=paths["output"] / "parquet")

    return {
        "generated_at": report.stamp,
        "stop_count": graph.n,
        "edge_count": int(len(graph.edges)),
        "unreachable_pairs": unreachable,
        "median_travel_time": median_time,
        "t_max": config.t_max,
        "top_betweenness": by_btw[["stop_id", "name", "betweenness"]].to_dict("records"),
        "top_reach": by_reach[["stop_id", "name", "reach"]].to_dict("records"),
        "routes": routes.to_dict("records"),
        "report": str(report_path),
    }

# ---------- Main entry ----------

def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Betweenness and reach centrality for a subway travel-time network.")
    parser.add_argument("--stops", required=True, help="CSV with stop_id,name,lat,lon")
    parser.add_argument("--edges", required=True, help="CSV with from,to,travel_time,route")
    parser.add_argument("--t-max", type=float, default=TransitConfig.t_max, help="Reach horizon in minutes")
    parser.add_argument("--seed", type=int, default=TransitConfig.seed, help="Seed for the schematic layout")
    parser.add_argument("--top", type=int, default=TransitConfig.top)
    parser.add_argument("--base", help="Output root (defaults to the working directory)", default=None)
    parser.add_argument("--root", dest="base", help="Alias for --base", default=None)
    parser.add_argument("--db", help="DuckDB file path (default Output/narratives.duckdb)", default=None)
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("--log-file", default=None)
    args = parser.parse_args(argv)

    setup_logging(logging.DEBUG if args.verbose else logging.INFO, args.log_file)
    paths = resolve_paths(args.base)
    db_path = pathlib.Path(args.db).expanduser() if args.db else paths["db_path"]
    for p in (args.stops, args.edges):
        if not pathlib.Path(p).expanduser().exists():
            raise SystemExit(f"Input not found: {p}")

    config = TransitConfig(t_max=args.t_max, seed=args.seed, top=args.top)
    try:
        graph = build_graph(load_stops(pathlib.Path(args.stops).expanduser()), load_edges(pathlib.Path(args.edges).expanduser()))
        summary = build_transit_report(graph, paths, PlotTheme(), config, db_path=db_path)
    except NarrativeError as e:
        raise SystemExit(f"transit: {e}")
    summary["written_at"] = generated_at()
    write_summary(paths["summaries_dir"], "transit", summary)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
