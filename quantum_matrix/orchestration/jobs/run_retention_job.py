import logging
from typing import Optional

from quantum_matrix.api.core.container import get_engine
from quantum_matrix.api.core.settings import settings
from quantum_matrix.core.calibration import export_calibration
from quantum_matrix.core.engine import Engine
from quantum_matrix.orchestration.feedback import prune_sentiment_history

log = logging.getLogger(__name__)


def run(engine: Optional[Engine] = None):
    try:
        engine = engine or get_engine()
        # keep an export of the graded history before old rows go
        path = export_calibration(engine.repository.evaluated_sentiment(), settings.calibration_export_path)
        if path:
            log.info("Calibration export written to %s", path)
        prune_sentiment_history(engine.repository, engine.config.retention_days)
    except Exception as e:
        log.exception("Retention job failed: %s", e)
