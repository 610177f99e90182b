from quantum_matrix.utils.logger import get_logger

logger = get_logger("quantum_matrix.api")
