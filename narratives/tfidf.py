"""
tf-idf over (term, document, count) tables.

idf = ln(documents / documents containing the term), so a term found in every
document scores exactly 0 everywhere.
"""
from __future__ import annotations

import numpy as np
import pandas as pd

from narratives.common import require_columns
from narratives.errors import StructuralError


def bind_tf_idf(counts: pd.DataFrame, term: str = "word", document: str = "document", n: str = "n") -> pd.DataFrame:
    require_columns(counts, [term, document, n], "tf-idf counts")
    df = counts.copy()
    if df.empty:
        return df.assign(tf=pd.Series(dtype=float), idf=pd.Series(dtype=float), tf_idf=pd.Series(dtype=float))
    if (df[n] < 0).any():
        raise StructuralError("tf-idf counts must be non-negative")

    totals = df.groupby(document)[n].transform("sum").astype(float)
    safe_totals = totals.where(totals > 0, 1.0)
    df["tf"] = np.where(totals > 0, df[n].astype(float) / safe_totals, 0.0)

    n_docs = df[document].nunique()
    docs_with_term = df[df[n] > 0].groupby(term)[document].nunique()
    df_term = df[term].map(docs_with_term).fillna(0).astype(float)
    if (df_term == 0).any():
        absent = sorted(df.loc[df_term == 0, term].astype(str).unique())[:10]
        raise StructuralError(f"term(s) present in no document: {absent}")
    df["idf"] = np.log(float(n_docs) / df_term)
    df["tf_idf"] = df["tf"] * df["idf"]
    return df


def top_terms(scored: pd.DataFrame, document: str = "document", k: int = 10, score: str = "tf_idf") -> pd.DataFrame:
    """Highest-scoring k terms per document, ties broken by raw count then term."""
    if scored.empty:
        return scored
    keys = [(document, True), (score, False), ("n", False), ("word", True)]
    keys = [(c, asc) for c, asc in keys if c in scored.columns]
    sort_cols = [c for c, _ in keys]
    ascending = [asc for _, asc in keys]
    ordered = scored.sort_values(sort_cols, ascending=ascending, kind="mergesort")
    return ordered.groupby(document, sort=True).head(k).reset_index(drop=True)
