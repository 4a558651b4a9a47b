from datetime import timedelta

from django.core.management.base import BaseCommand, CommandError
from django.db import transaction
from django.utils import timezone

from fiscal.models import SubmissionJob
from fiscal.services.job_store import JobStore


class Command(BaseCommand):
    help = (
        "Remove SubmissionJob DONE/FAILED concluídos há mais de N dias. "
        "A trilha de auditoria é mantida."
    )

    def add_arguments(self, parser):
        parser.add_argument(
            "--days",
            type=int,
            default=90,
            help="Idade mínima (em dias) dos jobs concluídos a remover (padrão: 90).",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Apenas informa quantos jobs seriam removidos.",
        )

    def handle(self, *args, **options):
        days = options["days"]
        if days < 1:
            raise CommandError("--days deve ser >= 1.")

        cutoff = timezone.now() - timedelta(days=days)

        if options["dry_run"]:
            total = SubmissionJob.objects.filter(
                status__in=SubmissionJob.TERMINAL_STATUSES,
                completed_at__lt=cutoff,
            ).count()
            self.stdout.write(f"[dry-run] {total} job(s) seriam removidos (concluídos antes de {cutoff:%Y-%m-%d}).")
            return

        with transaction.atomic():
            deleted = JobStore.purge_finished(cutoff)

        self.stdout.write(self.style.SUCCESS(f"{deleted} job(s) removido(s) (concluídos antes de {cutoff:%Y-%m-%d})."))
