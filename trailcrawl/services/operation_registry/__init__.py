from .models import OperationRecord, OperationHandle
from .registry import InMemoryOperationRegistry

__all__ = ["OperationRecord", "OperationHandle", "InMemoryOperationRegistry"]
