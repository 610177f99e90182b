from functools import lru_cache

from quantum_matrix.api.core.settings import settings
from quantum_matrix.core.engine import Engine, build_engine


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return build_engine(settings)
