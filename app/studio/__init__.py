"""
Character Studio Module
Quota-gated, sequential multimodal image generation.
"""
from .assembler import ResponseAssembler
from .clients import get_generator
from .errors import BatchAborted, EmptyBatchError, StorageUnavailable
from .models import BatchResult, BinaryAsset, Descriptor, Failure, Success
from .orchestrator import GenerationOrchestrator
from .quota import QuotaStore

__all__ = [
    "GenerationOrchestrator",
    "QuotaStore",
    "ResponseAssembler",
    "get_generator",
    "BatchAborted",
    "EmptyBatchError",
    "StorageUnavailable",
    "BatchResult",
    "BinaryAsset",
    "Descriptor",
    "Failure",
    "Success",
]
