"""
Bounded-parallelism pipeline: range producer -> channel -> workers.
"""

from .channel import BlockChannel, QueueStats
from .producer import RangeProducer
from .worker import Worker

__all__ = [
    "BlockChannel",
    "QueueStats",
    "RangeProducer",
    "Worker",
]
