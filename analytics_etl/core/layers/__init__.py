"""
Warehouse layers.

The pipeline runs them strictly in order: ODS (raw) -> DWD (cleaned and
dimensional) -> DWS (aggregated summaries) -> ADS (application metrics).
"""

from .ads import ADSLayer
from .base import DataWarehouseLayer, StageResult, TransformContext, generate_batch_id
from .dwd import DWDLayer
from .dws import DWSLayer
from .ods import ODSLayer

LAYER_ORDER = ("ODS", "DWD", "DWS", "ADS")

__all__ = [
    "DataWarehouseLayer",
    "TransformContext",
    "StageResult",
    "generate_batch_id",
    "ODSLayer",
    "DWDLayer",
    "DWSLayer",
    "ADSLayer",
    "LAYER_ORDER",
]
