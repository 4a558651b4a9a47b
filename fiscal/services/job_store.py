# fiscal/services/job_store.py
"""
Acesso aos SubmissionJob feito pelo worker.

Toda mutação é compare-and-set: o UPDATE só acontece se a linha ainda
estiver no estado que foi lido. Quem perde a corrida recebe False e segue.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, List

from django.db.models import Count, Q

from fiscal.models import SubmissionJob

logger = logging.getLogger("pdv.fiscal")


class JobStore:

    @staticmethod
    def claimable_filter(now: datetime) -> Q:
        return Q(status=SubmissionJob.STATUS_QUEUED, next_run_at__lte=now) | Q(
            status=SubmissionJob.STATUS_CLAIMED, lease_expires_at__lt=now
        )

    @classmethod
    def find_claimable(cls, now: datetime, *, limit: int) -> List[SubmissionJob]:
        """
        QUEUED vencidos ou CLAIMED com lease expirado, mais antigos primeiro.
        """
        if limit <= 0:
            return []
        return list(
            SubmissionJob.objects.filter(cls.claimable_filter(now)).order_by("next_run_at", "created_at")[:limit]
        )

    @staticmethod
    def claim(job: SubmissionJob, owner: str, now: datetime, lease_seconds: int) -> bool:
        """
        Reivindica o job para `owner` condicionando o UPDATE ao estado lido
        (status, lease_owner, lease_expires_at, attempts).

        Retorna True somente para o vencedor da corrida.
        """
        lease_expires_at = now + timedelta(seconds=lease_seconds)
        updated = SubmissionJob.objects.filter(
            id=job.id,
            status=job.status,
            lease_owner=job.lease_owner,
            lease_expires_at=job.lease_expires_at,
            attempts=job.attempts,
        ).update(
            status=SubmissionJob.STATUS_CLAIMED,
            lease_owner=owner,
            lease_expires_at=lease_expires_at,
            updated_at=now,
        )

        if updated != 1:
            logger.debug(
                "sunat_job_claim_lost",
                extra={"event": "sunat_job_claim_lost", "job_id": str(job.id), "worker": owner},
            )
            return False

        job.status = SubmissionJob.STATUS_CLAIMED
        job.lease_owner = owner
        job.lease_expires_at = lease_expires_at
        job.updated_at = now
        return True

    @staticmethod
    def release(job: SubmissionJob, owner: str, **changes) -> bool:
        """
        Tira o job de CLAIMED, condicionado a `owner` ainda ser o dono do lease.
        """
        updated = SubmissionJob.objects.filter(
            id=job.id,
            status=SubmissionJob.STATUS_CLAIMED,
            lease_owner=owner,
        ).update(**changes)
        if updated != 1:
            return False
        for name, value in changes.items():
            setattr(job, name, value)
        return True

    @staticmethod
    def holds_lease(job: SubmissionJob, owner: str) -> bool:
        return SubmissionJob.objects.filter(
            id=job.id,
            status=SubmissionJob.STATUS_CLAIMED,
            lease_owner=owner,
        ).exists()

    @staticmethod
    def counts_by_status() -> Dict[str, int]:
        counts = {status: 0 for status, _ in SubmissionJob.STATUS_CHOICES}
        for row in SubmissionJob.objects.values("status").annotate(total=Count("id")):
            counts[row["status"]] = row["total"]
        return counts

    @staticmethod
    def purge_finished(older_than: datetime) -> int:
        """
        Remove jobs DONE/FAILED concluídos antes de `older_than`.
        A auditoria é mantida.
        """
        deleted, _ = SubmissionJob.objects.filter(
            status__in=SubmissionJob.TERMINAL_STATUSES,
            completed_at__lt=older_than,
        ).delete()
        return deleted
