"""
Shared plumbing for the report scripts: output layout, logging and column checks.
"""
from __future__ import annotations

import logging
import pathlib
import re
from typing import Iterable

import pandas as pd

from narratives.errors import StructuralError

LOG_FORMAT = "[%(name)s] %(message)s"

# ---------- Paths ----------

def resolve_paths(base_arg: str | None) -> dict[str, pathlib.Path]:
    repo_root = pathlib.Path(base_arg).expanduser().resolve() if base_arg else pathlib.Path.cwd()
    output = repo_root / "Output"
    reports_dir = output / "reports"
    figures_dir = reports_dir / "figures"
    summaries_dir = output / "summaries"
    db_path = output / "narratives.duckdb"
    figures_dir.mkdir(parents=True, exist_ok=True)
    summaries_dir.mkdir(parents=True, exist_ok=True)
    return {
        "repo_root": repo_root,
        "output": output,
        "reports_dir": reports_dir,
        "figures_dir": figures_dir,
        "summaries_dir": summaries_dir,
        "db_path": db_path,
    }

# ---------- Logging ----------

def setup_logging(level: int = logging.INFO, log_file: str | None = None) -> logging.Logger:
    """Configure the `narratives` logger tree; safe to call more than once."""
    root_logger = logging.getLogger("narratives")
    for h in root_logger.handlers[:]:
        root_logger.removeHandler(h)
        h.close()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(console_handler)
    root_logger.setLevel(level)
    root_logger.propagate = False

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
            file_handler.setFormatter(logging.Formatter("%(asctime)s " + LOG_FORMAT))
            root_logger.addHandler(file_handler)
            root_logger.info("Logging to file: %s", log_file)
        except OSError as e:
            root_logger.error("Could not open log file %s: %s", log_file, e)
    return root_logger

# ---------- Helpers ----------

def norm_space(s: str) -> str:
    return re.sub(r"\s+", " ", (s or "").strip())


def require_columns(df: pd.DataFrame, columns: Iterable[str], what: str) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise StructuralError(f"{what}: missing column(s) {missing}; found {list(df.columns)}")
