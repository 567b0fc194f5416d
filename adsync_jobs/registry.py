"""Queue processor registry."""

from typing import Dict, Optional

from adsync_jobs.errors import UnknownQueueError
from adsync_jobs.models import QueueName
from adsync_jobs.processors.base import JobProcessor


class ProcessorRegistry:
    """Registry mapping each queue to the processor that consumes it."""

    def __init__(self):
        self._processors: Dict[QueueName, JobProcessor] = {}

    def register(self, processor: JobProcessor, queue: Optional[QueueName] = None) -> None:
        """
        Register a processor.

        Args:
            processor: Processor instance
            queue: Queue to consume; defaults to ``processor.queue``
        """
        queue = queue or processor.queue
        if queue is None:
            raise ValueError(f"No queue given for processor {type(processor).__name__}")
        self._processors[QueueName(queue)] = processor

    def get_processor(self, queue: QueueName) -> JobProcessor:
        """Get the processor of a queue, raising UnknownQueueError if none."""
        processor = self._processors.get(QueueName(queue))
        if processor is None:
            raise UnknownQueueError(str(queue), f"No processor registered for queue {queue}")
        return processor

    def queues(self) -> list:
        return list(self._processors)

    def all_processors(self) -> Dict[QueueName, JobProcessor]:
        return self._processors.copy()
