import json
import logging
import threading
import time
from concurrent import futures
from dataclasses import dataclass, field
from typing import Callable, Dict, Generator, Iterable, List, Optional

from requests.exceptions import RequestException

from stock_loader.models.cluster import Cluster, HttpMethod
from stock_loader.models.stock_record import StockRecord

logger = logging.getLogger(__name__)

BULK_PATH = "/_bulk"
NDJSON_HEADERS = {"Content-Type": "application/x-ndjson"}
# How many rejected items are quoted in a batch failure message
MAX_REPORTED_ITEM_ERRORS = 3


@dataclass
class BulkLoadSettings:
    batch_size: int = 1000
    max_concurrent_batches: int = 4
    max_retries_per_batch: int = 2
    retry_backoff_seconds: float = 30.0
    overall_timeout_seconds: float = 600.0

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {self.batch_size}")
        if self.max_concurrent_batches < 1:
            raise ValueError(f"max_concurrent_batches must be at least 1, got {self.max_concurrent_batches}")
        if self.max_retries_per_batch < 0:
            raise ValueError(f"max_retries_per_batch cannot be negative, got {self.max_retries_per_batch}")
        if self.retry_backoff_seconds < 0 or self.overall_timeout_seconds <= 0:
            raise ValueError("retry_backoff_seconds cannot be negative and overall_timeout_seconds must be positive")


@dataclass
class Batch:
    number: int
    # Ordinal of the first record in the whole load, used to derive stable document ids
    first_ordinal: int
    records: List[StockRecord]

    def document_ids(self) -> List[str]:
        return [str(self.first_ordinal + offset) for offset in range(len(self.records))]


class BatchWriteError(Exception):
    def __init__(self, batch_number: int, attempts: int, reason: str, document_count: int = 0):
        self.batch_number = batch_number
        self.attempts = attempts
        self.reason = reason
        self.document_count = document_count
        super().__init__(f"Batch {batch_number} failed after {attempts} attempt(s): {reason}")


class IngestionTimeout(Exception):
    def __init__(self, timeout_seconds: float, completed: int, pending: int):
        self.timeout_seconds = timeout_seconds
        self.completed = completed
        self.pending = pending
        super().__init__(f"Bulk load did not finish within {timeout_seconds}s: "
                         f"{completed} batch(es) completed, {pending} still pending")


@dataclass
class BatchResult:
    batch_number: int
    document_count: int
    attempts: int
    error: Optional[BatchWriteError] = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class BulkLoadResult:
    total_batches: int = 0
    confirmed_batches: int = 0
    documents_written: int = 0
    failures: List[BatchWriteError] = field(default_factory=list)
    pending_batches: int = 0
    timeout: Optional[IngestionTimeout] = None

    @property
    def failed_batches(self) -> int:
        return len(self.failures)

    @property
    def success(self) -> bool:
        return self.timeout is None and not self.failures and self.pending_batches == 0

    def __str__(self):
        return (f"Batches: {self.total_batches} total, {self.confirmed_batches} confirmed, "
                f"{self.failed_batches} failed, {self.pending_batches} pending\n"
                f"Documents written: {self.documents_written}")


def partition(records: Iterable[StockRecord], batch_size: int) -> Generator[Batch, None, None]:
    """Groups records into consecutive batches; record i lands in batch i // batch_size, in source order."""
    current: List[StockRecord] = []
    number = 0
    for record in records:
        current.append(record)
        if len(current) == batch_size:
            yield Batch(number=number, first_ordinal=number * batch_size, records=current)
            number += 1
            current = []
    if current:
        yield Batch(number=number, first_ordinal=number * batch_size, records=current)


class BulkLoader:
    """
    Writes records to the cluster's _bulk endpoint in batches, with a bounded number of batches in
    flight at once.

    A failed batch (transport error, error status, or any rejected document) is resent unchanged
    after a backoff, up to `max_retries_per_batch` more times. Documents carry ids derived from
    their position in the source, so resending a batch overwrites rather than duplicates.
    `load` blocks until every batch has resolved or `overall_timeout_seconds` passes; a timeout is
    reported in the returned BulkLoadResult, not raised.
    """

    def __init__(self, cluster: Cluster, settings: Optional[BulkLoadSettings] = None) -> None:
        self.cluster = cluster
        self.settings = settings if settings is not None else BulkLoadSettings()

    def load(self, records: Iterable[StockRecord], index_name: str,
             on_progress: Optional[Callable[[BatchResult], None]] = None,
             on_complete: Optional[Callable[[BulkLoadResult], None]] = None) -> BulkLoadResult:
        result = BulkLoadResult()
        cancelled = threading.Event()
        deadline = time.monotonic() + self.settings.overall_timeout_seconds
        in_flight: Dict[futures.Future, Batch] = {}
        executor = futures.ThreadPoolExecutor(max_workers=self.settings.max_concurrent_batches,
                                              thread_name_prefix="bulk-loader")
        logger.info(f"Starting bulk load into '{index_name}' with {self.settings}")
        try:
            for batch in partition(records, self.settings.batch_size):
                while len(in_flight) >= self.settings.max_concurrent_batches:
                    if not self._collect(in_flight, result, deadline, on_progress):
                        return self._time_out(result, in_flight, cancelled, executor, extra_pending=1)
                if time.monotonic() >= deadline:
                    return self._time_out(result, in_flight, cancelled, executor, extra_pending=1)
                future = executor.submit(self._write_batch, batch, index_name, cancelled)
                in_flight[future] = batch
                result.total_batches += 1
                logger.debug(f"Dispatched batch {batch.number} with {len(batch.records)} documents")

            while in_flight:
                if not self._collect(in_flight, result, deadline, on_progress):
                    return self._time_out(result, in_flight, cancelled, executor)
        finally:
            # No-op after a clean finish; stops outstanding batches if an unexpected error escaped
            cancelled.set()
            executor.shutdown(wait=False, cancel_futures=True)

        logger.info(f"Bulk load into '{index_name}' finished. {result}")
        if result.success and on_complete is not None:
            on_complete(result)
        return result

    def _collect(self, in_flight: Dict[futures.Future, Batch], result: BulkLoadResult, deadline: float,
                 on_progress: Optional[Callable[[BatchResult], None]]) -> bool:
        """Waits for at least one in-flight batch to resolve. Returns False if the deadline passed first."""
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return False
        done, _ = futures.wait(in_flight, timeout=remaining, return_when=futures.FIRST_COMPLETED)
        if not done:
            return False
        for future in done:
            batch = in_flight.pop(future)
            try:
                batch_result = future.result()
            except BatchWriteError as e:
                result.failures.append(e)
                batch_result = BatchResult(batch.number, len(batch.records), e.attempts, error=e)
            else:
                result.confirmed_batches += 1
                result.documents_written += batch_result.document_count
            if on_progress is not None:
                on_progress(batch_result)
        return True

    def _time_out(self, result: BulkLoadResult, in_flight: Dict[futures.Future, Batch],
                  cancelled: threading.Event, executor: futures.ThreadPoolExecutor,
                  extra_pending: int = 0) -> BulkLoadResult:
        cancelled.set()
        executor.shutdown(wait=False, cancel_futures=True)
        if extra_pending:
            # A batch had been read from the source but not yet dispatched
            result.total_batches += extra_pending
        result.pending_batches = len(in_flight) + extra_pending
        in_flight.clear()
        result.timeout = IngestionTimeout(self.settings.overall_timeout_seconds,
                                          completed=result.confirmed_batches + result.failed_batches,
                                          pending=result.pending_batches)
        logger.error(f"{result.timeout}. Documents already written remain in the index.")
        return result

    def _write_batch(self, batch: Batch, index_name: str, cancelled: threading.Event) -> BatchResult:
        payload = _bulk_payload(batch, index_name)
        max_attempts = self.settings.max_retries_per_batch + 1
        attempt = 0
        reason = "cancelled before the first attempt"
        while attempt < max_attempts and not cancelled.is_set():
            attempt += 1
            try:
                rejected = self._send(payload)
                if not rejected:
                    logger.debug(f"Batch {batch.number} written on attempt {attempt}")
                    return BatchResult(batch.number, len(batch.records), attempt)
                reason = (f"{len(rejected)} of {len(batch.records)} documents rejected: "
                          f"{'; '.join(rejected[:MAX_REPORTED_ITEM_ERRORS])}")
            except RequestException as e:
                reason = f"{type(e).__name__} {e}"

            if attempt < max_attempts:
                logger.warning(f"Batch {batch.number} attempt {attempt}/{max_attempts} failed ({reason}), "
                               f"retrying in {self.settings.retry_backoff_seconds}s")
                if cancelled.wait(self.settings.retry_backoff_seconds):
                    reason = f"cancelled while waiting to retry: {reason}"

        logger.error(f"Batch {batch.number} failed after {attempt} attempt(s): {reason}")
        raise BatchWriteError(batch.number, attempt, reason, document_count=len(batch.records))

    def _send(self, payload: str) -> List[str]:
        """Sends one _bulk request and returns a description of every rejected document."""
        r = self.cluster.call_api(BULK_PATH, method=HttpMethod.POST, data=payload, headers=NDJSON_HEADERS)
        try:
            body = r.json()
        except ValueError as e:
            return [f"unreadable bulk response: {e}"]
        if not isinstance(body, dict):
            return [f"unexpected bulk response: {str(body)[:200]}"]
        if not body.get("errors"):
            return []
        rejected = []
        for item in body.get("items", []):
            for action, outcome in item.items():
                status = outcome.get("status", 500)
                if status >= 300:
                    rejected.append(f"{action} _id={outcome.get('_id')} status={status} "
                                    f"error={outcome.get('error')}")
        if not rejected:
            rejected.append("bulk response reported errors without failed items")
        return rejected


def _bulk_payload(batch: Batch, index_name: str) -> str:
    lines = []
    for document_id, record in zip(batch.document_ids(), batch.records):
        lines.append(json.dumps({"index": {"_index": index_name, "_id": document_id}}))
        lines.append(json.dumps(record.to_document()))
    return "\n".join(lines) + "\n"
