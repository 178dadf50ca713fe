"""
Batch orchestration of the warehouse layers.
"""

from .pipeline import LayeredETLPipeline
from .quality_checks import QualityReport, run_quality_checks
from .runners import SequentialStageRunner, SparkStageRunner, create_spark_session

__all__ = [
    "LayeredETLPipeline",
    "SequentialStageRunner",
    "SparkStageRunner",
    "create_spark_session",
    "QualityReport",
    "run_quality_checks",
]
