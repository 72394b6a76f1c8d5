"""
Concurrency Dispatcher - bounded pools for investigation jobs.

ARCHITECTURE
------------
::

    ConcurrencyDispatcher(worker, spec_study_cap, source_study_cap)
      ├── .submit(request)   ─ admit or queue (FIFO), returns Future[Trace]
      ├── .cancel(future)    ─ drop a queued job / discard an in-flight result
      ├── .running_count()   ─ admitted jobs per phase
      ├── .queued_count()    ─ waiting jobs per phase
      └── .shutdown()        ─ drain pools

Each phase owns a ThreadPoolExecutor sized to its cap. Admission is
decided synchronously in `submit`, so the executors never queue work
themselves and the running/queued split is observable immediately.
"""

import logging
import threading
from collections import deque
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from typing import Callable, Deque, Dict, Optional, Set

from speccorpus.exceptions import InvestigationFailure
from speccorpus.models.trace import PHASES, SOURCE_STUDY, SPEC_STUDY, InvestigationRequest, Trace

logger = logging.getLogger(__name__)

InvestigationWorker = Callable[[InvestigationRequest], Trace]


class _Job:
    __slots__ = ("request", "future", "discarded")

    def __init__(self, request: InvestigationRequest):
        self.request = request
        self.future: Future = Future()
        self.discarded = False


class _PhasePool:
    def __init__(self, phase: str, cap: int):
        if cap < 1:
            raise ValueError(f"Cap for phase '{phase}' must be at least 1, got {cap}")
        self.phase = phase
        self.cap = cap
        self.executor = ThreadPoolExecutor(max_workers=cap, thread_name_prefix=f"speccorpus-{phase}")
        self.queue: Deque[_Job] = deque()
        self.running: Set[_Job] = set()


class ConcurrencyDispatcher:
    """
    Runs investigation jobs on two independently capped pools.

    Jobs beyond a phase's cap wait in submission order. Jobs never touch
    shared state; they only return a Trace. Failures resolve the Future
    with InvestigationFailure and are never retried here.
    """

    def __init__(
        self,
        worker: InvestigationWorker,
        spec_study_cap: int = 250,
        source_study_cap: int = 500
    ):
        """
        Args:
            worker: Investigation collaborator (request -> Trace)
            spec_study_cap: Max concurrently running spec-study jobs
            source_study_cap: Max concurrently running source-study jobs
        """
        self.worker = worker
        self._pools: Dict[str, _PhasePool] = {
            SPEC_STUDY: _PhasePool(SPEC_STUDY, spec_study_cap),
            SOURCE_STUDY: _PhasePool(SOURCE_STUDY, source_study_cap),
        }
        self._jobs: Dict[Future, _Job] = {}
        self._lock = threading.Lock()
        self._closed = False

        logger.info(
            f"Initialized ConcurrencyDispatcher: "
            f"spec_study_cap={spec_study_cap}, source_study_cap={source_study_cap}"
        )

    def _pool(self, phase: str) -> _PhasePool:
        if phase not in PHASES:
            raise ValueError(f"Unknown phase: {phase}")
        return self._pools[phase]

    def submit(self, request: InvestigationRequest) -> Future:
        """
        Schedule an investigation job.

        Returns:
            Future resolving to a Trace, or failing with InvestigationFailure

        Raises:
            RuntimeError: If the dispatcher has been shut down
        """
        pool = self._pool(request.phase)
        job = _Job(request)
        with self._lock:
            if self._closed:
                raise RuntimeError("Dispatcher is shut down")
            self._jobs[job.future] = job
            if len(pool.running) < pool.cap:
                self._start(pool, job)
            else:
                pool.queue.append(job)
                logger.debug(
                    f"Queued {request.phase} job for {request.topic_id} "
                    f"(queue depth {len(pool.queue)})"
                )
        return job.future

    def _start(self, pool: _PhasePool, job: _Job) -> None:
        # Caller holds self._lock.
        pool.running.add(job)
        job.future.set_running_or_notify_cancel()
        try:
            pool.executor.submit(self._run, pool, job)
        except RuntimeError as e:
            pool.running.discard(job)
            self._jobs.pop(job.future, None)
            logger.warning(f"Could not admit {job.request.phase} job for {job.request.topic_id}: {e}")
            job.future.set_exception(InvestigationFailure(job.request.topic_id, f"not admitted: {e}"))

    def _admit_next(self, pool: _PhasePool) -> None:
        # Caller holds self._lock.
        while pool.queue and len(pool.running) < pool.cap:
            job = pool.queue.popleft()
            if job.future.cancelled():
                self._jobs.pop(job.future, None)
                continue
            self._start(pool, job)

    def _run(self, pool: _PhasePool, job: _Job) -> None:
        request = job.request
        result: Optional[Trace] = None
        error: Optional[BaseException] = None
        try:
            trace = self.worker(request)
            if not isinstance(trace, Trace):
                raise InvestigationFailure(
                    request.topic_id, f"malformed trace of type {type(trace).__name__}"
                )
            if trace.topic_id != request.topic_id:
                raise InvestigationFailure(
                    request.topic_id, f"trace is for a different topic ({trace.topic_id})"
                )
            try:
                trace.check()
            except ValueError as e:
                raise InvestigationFailure(request.topic_id, f"malformed trace: {e}") from e
            result = trace
        except InvestigationFailure as e:
            error = e
        except Exception as e:
            failure = InvestigationFailure(request.topic_id, f"{type(e).__name__}: {e}")
            failure.__cause__ = e
            error = failure

        with self._lock:
            pool.running.discard(job)
            self._jobs.pop(job.future, None)
            self._admit_next(pool)

        if job.discarded:
            logger.debug(f"Discarding result of cancelled job for {request.topic_id}")
            job.future.set_exception(CancelledError())
        elif error is not None:
            logger.warning(str(error))
            job.future.set_exception(error)
        else:
            logger.debug(f"Investigation complete for {request.topic_id}")
            job.future.set_result(result)

    def cancel(self, future: Future) -> bool:
        """
        Cancel a job. A queued job is dropped at no cost; an in-flight job
        keeps running but its result is discarded (the Future raises
        CancelledError).

        Returns:
            True if the job was queued or in flight, False if already resolved
        """
        with self._lock:
            job = self._jobs.get(future)
            if job is None:
                return False
            pool = self._pools[job.request.phase]
            if job in pool.running:
                job.discarded = True
                return True
            try:
                pool.queue.remove(job)
            except ValueError:
                return False
            self._jobs.pop(future, None)
        return future.cancel()

    def running_count(self, phase: str = SOURCE_STUDY) -> int:
        with self._lock:
            return len(self._pool(phase).running)

    def queued_count(self, phase: str = SOURCE_STUDY) -> int:
        with self._lock:
            return len(self._pool(phase).queue)

    def shutdown(self, wait: bool = True, cancel_queued: bool = False) -> None:
        """
        Stop accepting jobs and drain the pools.

        Args:
            wait: Block until admitted and queued jobs finish. Without
                waiting, queued jobs are cancelled since the pools stop
                admitting work
            cancel_queued: Cancel jobs that have not been admitted yet
        """
        with self._lock:
            self._closed = True
            if cancel_queued or not wait:
                for pool in self._pools.values():
                    while pool.queue:
                        job = pool.queue.popleft()
                        self._jobs.pop(job.future, None)
                        job.future.cancel()
        if wait:
            for pool in self._pools.values():
                while True:
                    with self._lock:
                        pending = list(pool.running) + list(pool.queue)
                    if not pending:
                        break
                    for job in pending:
                        try:
                            job.future.exception()
                        except CancelledError:
                            pass
        for pool in self._pools.values():
            pool.executor.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown(wait=True)


# Design Rationale and Trade-offs:
#
# 1. Admission decided under one lock, outside the executors
#    - running_count()/queued_count() are exact at any instant
#    - Trade-off: Every submit and completion contends on the same lock
#
# 2. In-flight cancellation discards the result instead of interrupting the worker
#    - The worker thread runs to completion; only its Future changes
#    - Trade-off: A cancelled job still occupies its slot until it returns
