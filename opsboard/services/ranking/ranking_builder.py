"""
Ranking builder — pure pandas transformation from sale rows to top-N.

Single Responsibility: sum sales per seller, order them and enrich the
winners with collaborator and photo data. No I/O.

Ordering: amount descending; equal amounts keep the order in which the
sellers first appear in the input (stable sort).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd

UNKNOWN_SELLER = "Vendedor Não Encontrado"
UNKNOWN_TEAM = "N/A"


@dataclass(frozen=True)
class RankingRecord:
    seller_id: str
    name: str
    team: str
    photo_url: Optional[str]
    amount_sold: float
    rank: int
    organization: str


def sum_by_seller(
    rows: Iterable[Mapping[str, Any]],
    seller_order: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """
    ``[{seller_id, amount}, ...]`` → one row per seller with the summed amount.

    When *seller_order* is given, sellers are laid out in that order
    (unknown ids after it), which fixes the tie-break downstream.
    """
    df = pd.DataFrame(list(rows), columns=["seller_id", "amount"])
    if df.empty:
        return df
    df["seller_id"] = df["seller_id"].astype(str)
    df["amount"] = pd.to_numeric(df["amount"], errors="coerce").fillna(0.0)
    totals = df.groupby("seller_id", sort=False)["amount"].sum().reset_index()

    if seller_order:
        position = {sid: i for i, sid in enumerate(seller_order)}
        totals["_order"] = totals["seller_id"].map(position).fillna(len(position))
        totals = totals.sort_values("_order", kind="mergesort").drop(columns="_order")
    return totals.reset_index(drop=True)


def top_sellers(totals: pd.DataFrame, top_n: int) -> pd.DataFrame:
    """Highest *top_n* amounts with a 1-based ``rank`` column."""
    if totals.empty:
        return totals.assign(rank=pd.Series(dtype="int64"))
    ranked = totals.copy()
    ranked["amount"] = ranked["amount"].round(2)
    ranked = (
        ranked.sort_values("amount", ascending=False, kind="mergesort")
        .head(max(0, top_n))
        .reset_index(drop=True)
    )
    ranked["rank"] = ranked.index + 1
    return ranked


def build_records(
    ranked: pd.DataFrame,
    collaborators: Mapping[str, Mapping[str, Any]],
    photos: Mapping[str, str],
    organization: str,
) -> List[RankingRecord]:
    records: List[RankingRecord] = []
    for row in ranked.itertuples(index=False):
        seller = collaborators.get(row.seller_id) or {}
        records.append(RankingRecord(
            seller_id=row.seller_id,
            name=seller.get("name") or UNKNOWN_SELLER,
            team=seller.get("team") or UNKNOWN_TEAM,
            photo_url=photos.get(row.seller_id),
            amount_sold=round(float(row.amount), 2),
            rank=int(row.rank),
            organization=seller.get("organization") or organization,
        ))
    return records


def rank(
    rows: Iterable[Mapping[str, Any]],
    top_n: int,
    seller_order: Optional[Sequence[str]] = None,
) -> List[Dict[str, Any]]:
    """Convenience: ``[{seller_id, amount, rank}, ...]`` for the top *top_n*."""
    ranked = top_sellers(sum_by_seller(rows, seller_order), top_n)
    return [
        {"seller_id": r.seller_id, "amount": round(float(r.amount), 2), "rank": int(r.rank)}
        for r in ranked.itertuples(index=False)
    ]
