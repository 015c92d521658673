"""
Batch matching and fingerprinting.

Documents fan out over a bounded thread pool (``max_concurrent_operations``
workers). Every document is failure-isolated: an exception is logged and the
document is recorded as an unsuccessful outcome. Cancellation is checked before each
document starts and is re-raised as OperationCancelled once the pool drains.
"""

import logging
import threading
import time
from concurrent.futures import CancelledError, ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence

from ..exceptions import OperationCancelled
from ..schemas.document import ProcessedDocument
from ..schemas.results import BatchMatchResult, MatchOutcome
from ..schemas.template import Template
from .cancellation import CancellationToken, check_cancelled
from .fingerprint import DocumentFingerprint
from .matcher import MatchRanker

logger = logging.getLogger(__name__)

__all__ = ["BatchMatcher", "CancellationToken"]


class BatchMatcher:
    """Runs MatchRanker over many documents with bounded concurrency."""

    def __init__(self, ranker: Optional[MatchRanker] = None, max_workers: Optional[int] = None):
        self.ranker = ranker or MatchRanker()
        self.max_workers = max(1, max_workers or self.ranker.settings.max_concurrent_operations)

    def match_documents(
        self,
        documents: Sequence[ProcessedDocument],
        templates: Sequence[Template],
        minimum_confidence: Optional[float] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> BatchMatchResult:
        """
        Best match for every document.

        Args:
            documents: Processed documents
            templates: Candidate templates
            minimum_confidence: Best-match threshold (defaults to the ranker's criteria)
            cancel_token: Optional cancellation signal

        Returns:
            BatchMatchResult with one MatchOutcome per document; unsuccessful
            outcomes also land in ``errors`` with their reason

        Raises:
            OperationCancelled: if the token was cancelled during the run
        """
        start = time.perf_counter()
        batch = BatchMatchResult(total_documents=len(documents))
        lock = threading.Lock()
        templates = list(templates)

        def work(document: ProcessedDocument) -> None:
            check_cancelled(cancel_token, "batch matching")
            try:
                outcome = self.ranker.find_best_match(
                    document, templates, minimum_confidence, cancel_token=cancel_token
                )
            except OperationCancelled:
                raise
            except Exception as e:
                logger.warning(f"Matching failed for {document.document_id}: {e}")
                outcome = MatchOutcome.failure(document.document_id, f"Matching failed: {e}")
            with lock:
                batch.results[document.document_id] = outcome
                if not outcome.success:
                    batch.errors[document.document_id] = outcome.reason

        self._run(work, documents, cancel_token)

        batch.processing_time = time.perf_counter() - start
        logger.info(
            f"Batch matching finished: {batch.matched_documents}/{batch.total_documents} matched "
            f"in {batch.processing_time:.2f}s"
        )
        return batch

    def fingerprint_documents(
        self,
        documents: Sequence[ProcessedDocument],
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, Optional[DocumentFingerprint]]:
        """Fingerprint many documents; failures map to None."""
        results: Dict[str, Optional[DocumentFingerprint]] = {}
        lock = threading.Lock()

        def work(document: ProcessedDocument) -> None:
            check_cancelled(cancel_token, "batch fingerprinting")
            try:
                fp = self.ranker.fingerprint(document)
            except Exception as e:
                logger.warning(f"Fingerprinting failed for {document.document_id}: {e}")
                fp = None
            with lock:
                results[document.document_id] = fp

        self._run(work, documents, cancel_token)
        logger.info(f"Fingerprinted {sum(1 for v in results.values() if v)}/{len(documents)} documents")
        return results

    def _run(self, work, documents: Sequence[ProcessedDocument], cancel_token) -> None:
        cancelled: List[OperationCancelled] = []
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [executor.submit(work, doc) for doc in documents]
            for future in futures:
                try:
                    future.result()
                except CancelledError:
                    continue
                except OperationCancelled as e:
                    cancelled.append(e)
                    for pending in futures:
                        pending.cancel()
        if cancelled or (cancel_token is not None and cancel_token.cancelled):
            logger.info("Batch operation cancelled")
            raise cancelled[0] if cancelled else OperationCancelled("batch operation cancelled")
