import logging
import os

import pandas as pd

log = logging.getLogger(__name__)


def ensure_folder(path):
    d = os.path.dirname(path)
    if d and not os.path.exists(d):
        os.makedirs(d, exist_ok=True)


def save_csv_parquet(df: pd.DataFrame, base: str) -> str:
    """Write df to base.csv and, when a parquet engine is installed, base.parquet."""
    ensure_folder(base)
    csv = base + ".csv"
    parquet = base + ".parquet"
    df.to_csv(csv, index=False)
    try:
        df.to_parquet(parquet, index=False)
    except ImportError as e:
        log.info("Parquet export skipped for %s: %s", parquet, e)
    return csv
