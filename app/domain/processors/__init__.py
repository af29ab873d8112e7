"""
Platform event processors
"""
from app.domain.processors.base import InboundEvent, ProcessAction, ProcessResult
from app.domain.processors.dependencies import ProcessorDependencies, build_processor_dependencies
from app.domain.processors.registry import get_processor

__all__ = [
    "InboundEvent",
    "ProcessAction",
    "ProcessResult",
    "ProcessorDependencies",
    "build_processor_dependencies",
    "get_processor",
]
