from typing import Optional

from quantum_matrix.pipelines.market.market_data import FearGreedReading
from quantum_matrix.utils.sentiment_scaler import index_to_signal

NEUTRAL_INDEX = 50.0


def lexicon_score(reading: Optional[FearGreedReading]) -> float:
    """
    Map the Crypto Fear & Greed index (0-100) to [-1, 1]:
      0 → -1 (extreme fear)
     50 →  0 (neutral)
    100 → +1 (extreme greed)
    A missing reading counts as neutral.
    """
    value = reading.value if reading is not None else NEUTRAL_INDEX
    return index_to_signal(value, NEUTRAL_INDEX)
