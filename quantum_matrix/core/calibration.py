from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from quantum_matrix.core.schema import SentimentRecord
from quantum_matrix.utils.config_loader import FeedbackConfig
from quantum_matrix.utils.save_utils import save_csv_parquet

log = logging.getLogger(__name__)

COLUMNS = [
    "id", "recorded_at", "normalized_score", "label", "confidence",
    "market_price_at_recording", "realized_price_change_24h", "is_correct",
]


def predicted_band(score: float, config: Optional[FeedbackConfig] = None) -> str:
    cfg = config or FeedbackConfig()
    if score > cfg.bullish_score_above:
        return "bullish"
    if score < cfg.bearish_score_below:
        return "bearish"
    return "neutral"


def evaluations_frame(records: Sequence[SentimentRecord], config: Optional[FeedbackConfig] = None) -> pd.DataFrame:
    rows = [
        {
            "id": r.id,
            "recorded_at": r.recorded_at,
            "normalized_score": r.normalized_score,
            "label": r.label.value,
            "confidence": r.confidence,
            "market_price_at_recording": r.market_price_at_recording,
            "realized_price_change_24h": r.realized_price_change_24h,
            "is_correct": r.is_correct,
        }
        for r in records
        if r.is_evaluated
    ]
    df = pd.DataFrame(rows, columns=COLUMNS)
    df["band"] = [predicted_band(s, config) for s in df["normalized_score"]]
    return df


def calibration_report(records: Sequence[SentimentRecord], config: Optional[FeedbackConfig] = None) -> Dict[str, Any]:
    """Accuracy overall and per predicted band over graded records."""
    df = evaluations_frame(records, config)
    if df.empty:
        return {"evaluated": 0, "accuracy": None, "bands": {}}

    correct = df["is_correct"].astype(bool)
    bands: Dict[str, Dict[str, Any]] = {}
    for band, group in df.groupby("band"):
        hits = group["is_correct"].astype(bool)
        bands[str(band)] = {
            "count": int(len(group)),
            "accuracy": round(float(hits.mean()), 4),
            "avg_change_pct": round(float(group["realized_price_change_24h"].mean()), 4),
        }

    return {
        "evaluated": int(len(df)),
        "accuracy": round(float(correct.mean()), 4),
        "bands": bands,
    }


def recent_mistakes(records: Sequence[SentimentRecord], limit: int = 10) -> List[Dict[str, Any]]:
    df = evaluations_frame(records)
    if df.empty:
        return []
    wrong = df[~df["is_correct"].astype(bool)].sort_values("recorded_at", ascending=False).head(limit)
    return [
        {
            "id": int(row.id),
            "recorded_at": row.recorded_at.isoformat(),
            "normalized_score": int(row.normalized_score),
            "label": row.label,
            "realized_price_change_24h": float(row.realized_price_change_24h),
        }
        for row in wrong.itertuples(index=False)
    ]


def export_calibration(records: Sequence[SentimentRecord], base_path: str) -> Optional[str]:
    df = evaluations_frame(records)
    if df.empty:
        log.info("No graded sentiment to export")
        return None
    return save_csv_parquet(df, base_path)
