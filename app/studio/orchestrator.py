"""
Generation Orchestrator
Drives a batch of descriptors through the generator under quota control.
"""
import logging
import threading
from enum import Enum
from typing import Callable, Optional, Sequence

from .assembler import ResponseAssembler
from .clients.base import BaseGenerator
from .errors import BatchAborted, EmptyBatchError, StorageUnavailable
from .models import (
    BatchResult,
    BatchResultBuilder,
    BatchStatus,
    Descriptor,
    ErrorKind,
    GenerationOutcome,
)
from .quota import QuotaStore, can_generate, record_generation

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, GenerationOutcome], None]

QUOTA_DETAIL = "Generation quota exhausted"
CANCEL_DETAIL = "Batch canceled before this item started"
STORAGE_DETAIL = "Batch aborted: quota store unavailable"


def _report(on_progress: Optional[ProgressCallback], start: int, total: int, outcomes) -> None:
    if on_progress is None:
        return
    for offset, outcome in enumerate(outcomes):
        on_progress(start + offset, total, outcome)


class RunState(str, Enum):
    IDLE = "idle"
    QUOTA_CHECKING = "quota_checking"
    BLOCKED = "blocked"
    RUNNING = "running"
    COMPLETED = "completed"


class GenerationOrchestrator:
    """
    Runs batches for one generator against one quota store.

    Descriptors are processed strictly one after another. Quota is checked
    before every call and recorded after every success, so the count can
    never run ahead of what the user is allowed, and an interrupted batch
    leaves the stored record exact. Do not parallelize the loop in run().
    """

    def __init__(
        self,
        quota_store: QuotaStore,
        generator: BaseGenerator,
        assembler: Optional[ResponseAssembler] = None,
    ):
        self.quota_store = quota_store
        self.generator = generator
        self.assembler = assembler or ResponseAssembler()
        self.state = RunState.IDLE

    def run(
        self,
        user_id: str,
        batch: Sequence[Descriptor],
        cancel_event: Optional[threading.Event] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchResult:
        """
        Execute a batch.

        Args:
            user_id: Key of the quota record to check and charge
            batch: Descriptors in submission order
            cancel_event: Checked between descriptors; when set, the rest are aborted
            on_progress: Called as (index, total, outcome) once per descriptor, skipped ones included

        Returns:
            BatchResult with one outcome per descriptor, in submission order

        Raises:
            EmptyBatchError: batch has no descriptors
            StorageUnavailable: quota record could not be loaded
            BatchAborted: quota record could not be persisted mid-batch;
                the partial result is attached as `.result`
        """
        batch = list(batch)
        if not batch:
            raise EmptyBatchError("Batch must contain at least one descriptor")

        total = len(batch)
        builder = BatchResultBuilder()

        self.state = RunState.QUOTA_CHECKING
        try:
            record = self.quota_store.load(user_id)
        except StorageUnavailable:
            self.state = RunState.IDLE
            raise

        if not can_generate(record):
            self.state = RunState.BLOCKED
            logger.info(f"Quota exhausted for {user_id}; blocking batch of {total}")
            skipped = builder.fail_remaining(batch, ErrorKind.QUOTA_EXCEEDED, QUOTA_DETAIL)
            _report(on_progress, 0, total, skipped)
            return builder.build(BatchStatus.QUOTA_EXCEEDED)

        self.state = RunState.RUNNING
        logger.info(f"Running batch of {total} for {user_id} with {self.generator.name}")

        status = BatchStatus.COMPLETED
        for index, descriptor in enumerate(batch):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Batch for {user_id} canceled at item {index + 1}/{total}")
                skipped = builder.fail_remaining(batch[index:], ErrorKind.ABORTED, CANCEL_DETAIL)
                _report(on_progress, index, total, skipped)
                status = BatchStatus.ABORTED
                break

            if not can_generate(record):
                logger.info(f"Quota exhausted for {user_id} at item {index + 1}/{total}")
                skipped = builder.fail_remaining(batch[index:], ErrorKind.QUOTA_EXCEEDED, QUOTA_DETAIL)
                _report(on_progress, index, total, skipped)
                break

            outcome = self.assembler.reduce(descriptor.id, self.generator.stream(descriptor))
            builder.add(outcome)

            if outcome.succeeded:
                record = record_generation(record)
                try:
                    self.quota_store.persist(record)
                except StorageUnavailable as e:
                    logger.error(f"Aborting batch for {user_id} after item {index + 1}/{total}: {e}")
                    skipped = builder.fail_remaining(batch[index + 1:], ErrorKind.ABORTED, STORAGE_DETAIL)
                    _report(on_progress, index, total, [outcome] + skipped)
                    self.state = RunState.COMPLETED
                    raise BatchAborted(str(e), builder.build(BatchStatus.ABORTED)) from e
                logger.info(f"Successfully generated: {descriptor.id}")
            else:
                logger.warning(f"Failed to generate: {descriptor.id} - {outcome.reason.value}")

            _report(on_progress, index, total, [outcome])

        self.state = RunState.COMPLETED
        result = builder.build(status)
        logger.info(
            f"Batch for {user_id} finished: {result.succeeded_count} succeeded, {result.failed_count} failed"
        )
        return result
