# fiscal/worker.py
"""
Worker de envio SUNAT.

Instância explícita (sem estado de módulo), com ciclo:
  1. A cada POLL_INTERVAL_SECONDS busca jobs reivindicáveis, limitado às
     vagas livres do pool.
  2. Reivindica cada job com compare-and-set (perdeu a corrida → ignora).
  3. Despacha para o pool (threads daemon + BoundedSemaphore).
  4. O resultado é aplicado condicionado ao lease ainda ser deste worker.
  5. request_stop() para de reivindicar; tarefas em voo têm
     SHUTDOWN_GRACE_SECONDS, o resto fica para a expiração do lease.
  6. A cada HEALTH_CHECK_INTERVAL_SECONDS, SELECT 1 + contagem por status.
"""

from __future__ import annotations

import logging
import os
import queue
import socket
import threading
import uuid
from concurrent.futures import Executor, Future, wait
from datetime import datetime
from typing import Callable, List, Optional, Set

from django.db import DatabaseError, connection
from django.utils import timezone

from fiscal.conf import SubmissionConfig, get_submission_config
from fiscal.exceptions import ERR_INTERNAL
from fiscal.models import SubmissionAudit, SubmissionJob
from fiscal.audit import record_event
from fiscal.services.job_handler import SubmissionJobHandler
from fiscal.services.job_store import JobStore
from fiscal.services.outcome_service import apply_outcome
from fiscal.services.outcomes import HandlerOutcome

logger = logging.getLogger("pdv.fiscal")


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class DaemonThreadExecutor(Executor):
    """
    Pool fixo de threads daemon alimentado por uma fila.

    Uma chamada SOAP presa depois do shutdown não segura a saída do
    processo; o job fica CLAIMED até o lease expirar.
    """

    def __init__(self, max_workers: int, thread_name_prefix: str = "sunat-worker"):
        if max_workers <= 0:
            raise ValueError("max_workers deve ser maior que zero.")
        self._queue: queue.Queue = queue.Queue()
        self._shutdown = False
        self._shutdown_lock = threading.Lock()
        self.threads: List[threading.Thread] = []
        for index in range(max_workers):
            thread = threading.Thread(target=self._run, name=f"{thread_name_prefix}_{index}", daemon=True)
            thread.start()
            self.threads.append(thread)

    def submit(self, fn, /, *args, **kwargs) -> Future:
        with self._shutdown_lock:
            if self._shutdown:
                raise RuntimeError("Executor já encerrado.")
            future: Future = Future()
            self._queue.put((future, fn, args, kwargs))
        return future

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                return
            future, fn, args, kwargs = item
            if not future.set_running_or_notify_cancel():
                continue
            try:
                result = fn(*args, **kwargs)
            except Exception as exc:
                future.set_exception(exc)
            else:
                future.set_result(result)

    def shutdown(self, wait: bool = True, *, cancel_futures: bool = False) -> None:
        with self._shutdown_lock:
            if self._shutdown:
                return
            self._shutdown = True
            if cancel_futures:
                while True:
                    try:
                        item = self._queue.get_nowait()
                    except queue.Empty:
                        break
                    if item is not None:
                        item[0].cancel()
            for _ in self.threads:
                self._queue.put(None)

        if wait:
            for thread in self.threads:
                thread.join()


class SubmissionWorker:

    def __init__(
        self,
        *,
        handler: Optional[SubmissionJobHandler] = None,
        config: Optional[SubmissionConfig] = None,
        worker_id: Optional[str] = None,
        executor: Optional[Executor] = None,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.config = config or get_submission_config()
        self.handler = handler or SubmissionJobHandler(config=self.config)
        self.worker_id = worker_id or default_worker_id()
        self.clock = clock

        self._executor = executor or DaemonThreadExecutor(
            self.config.concurrency,
            thread_name_prefix="sunat-worker",
        )
        self._slots = threading.BoundedSemaphore(self.config.concurrency)
        self._in_flight = 0
        self._in_flight_lock = threading.Lock()
        self._futures: Set[Future] = set()
        self._stop = threading.Event()
        self._last_health_check: Optional[datetime] = None

    # -------------------------
    # Estado
    # -------------------------
    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def free_slots(self) -> int:
        with self._in_flight_lock:
            return self.config.concurrency - self._in_flight

    def request_stop(self) -> None:
        if not self._stop.is_set():
            logger.info("sunat_worker_stop_requested", extra={"event": "sunat_worker_stop", "worker": self.worker_id})
        self._stop.set()

    # -------------------------
    # Ciclo
    # -------------------------
    def run_once(self, now: Optional[datetime] = None) -> int:
        """
        Um ciclo de busca/reivindicação/despacho. Retorna quantos jobs
        foram despachados.
        """
        if self.stopping:
            return 0

        now = now or self.clock()
        self.maybe_health_check(now)

        dispatched = 0
        for job in JobStore.find_claimable(now, limit=self.free_slots()):
            if self.stopping:
                break
            if not self._slots.acquire(blocking=False):
                break

            expired_lease = job.is_lease_expired(now)
            if not JobStore.claim(job, self.worker_id, now, self.config.lease_seconds):
                self._slots.release()
                continue

            with self._in_flight_lock:
                self._in_flight += 1

            record_event(
                SubmissionAudit.EVENT_CLAIMED,
                job=job,
                actor=self.worker_id,
                detail={"attempts": job.attempts, "lease_expirado": expired_lease},
            )
            logger.info(
                "sunat_job_claimed",
                extra={
                    "event": "sunat_job_claimed",
                    "job_id": str(job.id),
                    "document_id": str(job.document_id),
                    "worker": self.worker_id,
                    "attempts": job.attempts,
                },
            )

            future = self._executor.submit(self._process, job)
            self._futures.add(future)
            future.add_done_callback(self._on_task_done)
            dispatched += 1

        return dispatched

    def run_forever(self) -> None:
        logger.info(
            "sunat_worker_started",
            extra={
                "event": "sunat_worker_started",
                "worker": self.worker_id,
                "concurrency": self.config.concurrency,
                "poll_interval": self.config.poll_interval_seconds,
            },
        )
        while not self.stopping:
            try:
                self.run_once()
            except DatabaseError:
                logger.exception(
                    "sunat_worker_poll_failed",
                    extra={"event": "sunat_worker_poll_failed", "worker": self.worker_id},
                )
            self._stop.wait(self.config.poll_interval_seconds)

        self.shutdown()

    def shutdown(self) -> int:
        """
        Espera as tarefas em voo por até SHUTDOWN_GRACE_SECONDS. Retorna
        quantas ficaram para trás (serão recuperadas pela expiração do lease).
        """
        self.request_stop()
        pending = set(self._futures)
        abandoned = 0
        if pending:
            _done, not_done = wait(pending, timeout=self.config.shutdown_grace_seconds)
            abandoned = len(not_done)

        self._executor.shutdown(wait=False, cancel_futures=True)
        logger.info(
            "sunat_worker_stopped",
            extra={"event": "sunat_worker_stopped", "worker": self.worker_id, "abandoned": abandoned},
        )
        return abandoned

    # -------------------------
    # Execução de um job
    # -------------------------
    def _on_task_done(self, future: Future) -> None:
        self._futures.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            # Resultado não gravado; o lease expira e outro ciclo retoma o job
            logger.error(
                "sunat_job_outcome_not_persisted",
                exc_info=exc,
                extra={"event": "sunat_job_outcome_not_persisted", "worker": self.worker_id},
            )

    def _process(self, job: SubmissionJob) -> None:
        try:
            try:
                outcome = self.handler.handle(job)
            except Exception:
                logger.exception(
                    "sunat_job_handler_crashed",
                    extra={
                        "event": "sunat_job_handler_crashed",
                        "job_id": str(job.id),
                        "document_id": str(job.document_id),
                        "worker": self.worker_id,
                    },
                )
                outcome = HandlerOutcome.fatal(ERR_INTERNAL, "Erro interno no processamento do envio.")

            apply_outcome(job, self.worker_id, outcome, now=self.clock())
        finally:
            with self._in_flight_lock:
                self._in_flight -= 1
            self._slots.release()
            if threading.current_thread() is not threading.main_thread():
                connection.close()

    # -------------------------
    # Health check
    # -------------------------
    def maybe_health_check(self, now: datetime) -> bool:
        interval = self.config.health_check_interval_seconds
        if self._last_health_check is not None and (now - self._last_health_check).total_seconds() < interval:
            return False
        self._last_health_check = now
        return self.health_check()

    def health_check(self) -> bool:
        try:
            with connection.cursor() as cursor:
                cursor.execute("SELECT 1")
                cursor.fetchone()
            counts = JobStore.counts_by_status()
        except DatabaseError as exc:
            logger.warning(
                "sunat_worker_health_degraded",
                extra={
                    "event": "sunat_worker_health_degraded",
                    "worker": self.worker_id,
                    "error": exc.__class__.__name__,
                },
            )
            return False

        logger.info(
            "sunat_worker_health",
            extra={
                "event": "sunat_worker_health",
                "worker": self.worker_id,
                "in_flight": self.config.concurrency - self.free_slots(),
                "queued": counts.get(SubmissionJob.STATUS_QUEUED, 0),
                "claimed": counts.get(SubmissionJob.STATUS_CLAIMED, 0),
                "done": counts.get(SubmissionJob.STATUS_DONE, 0),
                "failed": counts.get(SubmissionJob.STATUS_FAILED, 0),
            },
        )
        return True
