"""
Utility modules for the cascade counterfactual engine.
"""

from .logging_utils import setup_logger, get_logger
from .data_validation import validate_dataframe, validate_dag_structure, validate_time_grid

__all__ = [
    "setup_logger",
    "get_logger",
    "validate_dataframe",
    "validate_dag_structure",
    "validate_time_grid",
]
