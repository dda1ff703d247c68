"""
Orchestration: ingestion and query pipeline, evaluation, conversation memory.
"""

from .evaluator import (
    QualityAssessment,
    RAGMetrics,
    assess_rag_quality,
    calculate_faithfulness,
    calculate_rag_metrics,
)
from .memory import ConversationMemory
from .pipeline import (
    IngestionError,
    ProcessingStatus,
    QueryOptions,
    RAGFlowResult,
    RAGPipeline,
)

__all__ = [
    "ConversationMemory",
    "IngestionError",
    "ProcessingStatus",
    "QualityAssessment",
    "QueryOptions",
    "RAGFlowResult",
    "RAGMetrics",
    "RAGPipeline",
    "assess_rag_quality",
    "calculate_faithfulness",
    "calculate_rag_metrics",
]
