"""
Chart renderers. Every call takes a PlotTheme; nothing touches pyplot or the
global rcParams, figures are built as matplotlib.figure.Figure objects inside
an rc_context derived from the theme.
"""
from __future__ import annotations

import logging
import pathlib
from dataclasses import dataclass
from typing import Sequence

import matplotlib as mpl
import numpy as np
import pandas as pd
from matplotlib.figure import Figure

log = logging.getLogger("narratives.plotting")


@dataclass(frozen=True)
class PlotTheme:
    font_family: str = "DejaVu Sans"
    font_size: float = 10.0
    palette: tuple[str, ...] = ("#0f172a", "#2563eb", "#db2777", "#16a34a", "#ea580c", "#7c3aed")
    figsize: tuple[float, float] = (8.0, 5.0)
    dpi: int = 120
    grid_alpha: float = 0.25
    background: str = "white"
    cmap: str = "viridis"
    file_format: str = "svg"

    def rc_params(self) -> dict:
        return {
            "font.family": self.font_family,
            "font.size": self.font_size,
            "axes.titlesize": self.font_size + 2,
            "axes.labelsize": self.font_size,
            "axes.spines.top": False,
            "axes.spines.right": False,
            "axes.prop_cycle": mpl.cycler(color=list(self.palette)),
            "figure.facecolor": self.background,
            "savefig.facecolor": self.background,
            "svg.fonttype": "none",
            # Stable SVG output across runs.
            "svg.hashsalt": "narratives",
        }

    def color(self, i: int) -> str:
        return self.palette[i % len(self.palette)]


def _figure(theme: PlotTheme, figsize: tuple[float, float] | None = None) -> Figure:
    return Figure(figsize=figsize or theme.figsize, dpi=theme.dpi, layout="tight")


def _save(fig: Figure, path: pathlib.Path, theme: PlotTheme) -> pathlib.Path:
    path = pathlib.Path(path)
    if path.suffix.lstrip(".") != theme.file_format:
        path = path.with_suffix("." + theme.file_format)
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, format=theme.file_format, metadata={"Date": None} if theme.file_format == "svg" else None)
    log.debug("Wrote chart %s", path)
    return path


def bar_chart(
    labels: Sequence[str],
    values: Sequence[float],
    path: pathlib.Path,
    theme: PlotTheme,
    *,
    title: str = "",
    xlabel: str = "",
    horizontal: bool = True,
) -> pathlib.Path:
    with mpl.rc_context(theme.rc_params()):
        height = max(theme.figsize[1], 0.28 * len(labels) + 1.0) if horizontal else theme.figsize[1]
        fig = _figure(theme, (theme.figsize[0], height))
        ax = fig.add_subplot(111)
        pos = np.arange(len(labels))
        if horizontal:
            # Largest value on top.
            ax.barh(pos[::-1], list(values), color=theme.color(1))
            ax.set_yticks(pos[::-1], labels=[str(l) for l in labels])
            ax.set_xlabel(xlabel)
            ax.grid(True, axis="x", alpha=theme.grid_alpha)
        else:
            ax.bar(pos, list(values), color=theme.color(1))
            ax.set_xticks(pos, labels=[str(l) for l in labels], rotation=45, ha="right")
            ax.set_ylabel(xlabel)
            ax.grid(True, axis="y", alpha=theme.grid_alpha)
        ax.set_title(title, loc="left")
        return _save(fig, path, theme)


def line_chart(
    x: Sequence,
    series: dict[str, Sequence[float]],
    path: pathlib.Path,
    theme: PlotTheme,
    *,
    title: str = "",
    xlabel: str = "",
    ylabel: str = "",
) -> pathlib.Path:
    with mpl.rc_context(theme.rc_params()):
        fig = _figure(theme)
        ax = fig.add_subplot(111)
        for i, (label, ys) in enumerate(series.items()):
            ax.plot(list(x), list(ys), linewidth=1.8, color=theme.color(i), label=label)
        ax.set_title(title, loc="left")
        ax.set_xlabel(xlabel)
        ax.set_ylabel(ylabel)
        ax.grid(True, alpha=theme.grid_alpha)
        if len(series) > 1:
            ax.legend(fontsize=theme.font_size - 1, loc="best")
        return _save(fig, path, theme)


def heatmap(matrix: pd.DataFrame, path: pathlib.Path, theme: PlotTheme, *, title: str = "", colorbar_label: str = "") -> pathlib.Path:
    values = np.ma.masked_invalid(matrix.to_numpy(dtype=float))
    with mpl.rc_context(theme.rc_params()):
        side = max(theme.figsize[0], 0.22 * len(matrix.columns) + 2.5)
        fig = _figure(theme, (side, side * 0.85))
        ax = fig.add_subplot(111)
        im = ax.imshow(values, cmap=theme.cmap, vmin=0.0, aspect="auto")
        ax.set_xticks(np.arange(len(matrix.columns)), labels=[str(c) for c in matrix.columns], rotation=90, fontsize=theme.font_size - 3)
        ax.set_yticks(np.arange(len(matrix.index)), labels=[str(i) for i in matrix.index], fontsize=theme.font_size - 3)
        ax.set_title(title, loc="left")
        cbar = fig.colorbar(im, ax=ax, shrink=0.8)
        if colorbar_label:
            cbar.set_label(colorbar_label)
        return _save(fig, path, theme)


def scatter_with_lines(
    x: Sequence[float],
    y: Sequence[float],
    lines: Sequence[tuple[str, float, float]],
    path: pathlib.Path,
    theme: PlotTheme,
    *,
    title: str = "",
    xlabel: str = "",
    ylabel: str = "",
) -> pathlib.Path:
    """Scatter plot overlaid with (label, intercept, slope) lines."""
    xs = np.asarray(x, dtype=float)
    with mpl.rc_context(theme.rc_params()):
        fig = _figure(theme)
        ax = fig.add_subplot(111)
        ax.scatter(xs, np.asarray(y, dtype=float), s=10, alpha=0.45, color=theme.color(0), label="sample")
        grid = np.linspace(float(xs.min()), float(xs.max()), 50) if xs.size else np.array([])
        for i, (label, intercept, slope) in enumerate(lines):
            ax.plot(grid, intercept + slope * grid, linewidth=2.0, color=theme.color(i + 1), label=label)
        ax.set_title(title, loc="left")
        ax.set_xlabel(xlabel)
        ax.set_ylabel(ylabel)
        ax.grid(True, alpha=theme.grid_alpha)
        ax.legend(fontsize=theme.font_size - 1, loc="best")
        return _save(fig, path, theme)


def network_chart(
    positions: pd.DataFrame,
    edges: pd.DataFrame,
    sizes: pd.Series,
    path: pathlib.Path,
    theme: PlotTheme,
    *,
    title: str = "",
    labels: pd.Series | None = None,
) -> pathlib.Path:
    """positions: index=node, columns x/y; edges: src/dst columns; sizes: index=node in [0, 1]."""
    with mpl.rc_context(theme.rc_params()):
        fig = _figure(theme, (theme.figsize[0], theme.figsize[0]))
        ax = fig.add_subplot(111)
        for e in edges.itertuples(index=False):
            if e.src not in positions.index or e.dst not in positions.index:
                continue
            a = positions.loc[e.src]
            b = positions.loc[e.dst]
            ax.plot([a.x, b.x], [a.y, b.y], color="#94a3b8", linewidth=0.6, zorder=1)
        s = sizes.reindex(positions.index).fillna(0.0)
        ax.scatter(positions.x, positions.y, s=12 + 180 * s.to_numpy(), c=s.to_numpy(), cmap=theme.cmap, zorder=2)
        if labels is not None:
            for node, text in labels.items():
                if node in positions.index:
                    ax.annotate(str(text), (positions.loc[node, "x"], positions.loc[node, "y"]), fontsize=theme.font_size - 3)
        ax.set_title(title, loc="left")
        ax.set_axis_off()
        return _save(fig, path, theme)
