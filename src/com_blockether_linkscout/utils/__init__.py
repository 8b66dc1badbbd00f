"""
Utility modules for the linkscout pipeline.
"""

from .BatchQueue import BatchQueue, BatchQueueResult
from .Clock import Clock, ManualClock, SystemClock

__all__ = [
    "BatchQueue",
    "BatchQueueResult",
    "Clock",
    "SystemClock",
    "ManualClock",
]
