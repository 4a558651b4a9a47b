import logging
import signal

from django.core.management.base import BaseCommand

from fiscal.conf import get_submission_config
from fiscal.worker import SubmissionWorker

logger = logging.getLogger("pdv.fiscal")


class Command(BaseCommand):
    help = "Executa o worker de envio de comprobantes à SUNAT até receber SIGTERM/SIGINT."

    def add_arguments(self, parser):
        parser.add_argument(
            "--once",
            action="store_true",
            help="Executa um único ciclo de busca/despacho e encerra.",
        )
        parser.add_argument(
            "--worker-id",
            dest="worker_id",
            default=None,
            help="Identificador do worker (padrão: host:pid:aleatório).",
        )

    def handle(self, *args, **options):
        config = get_submission_config()
        worker = SubmissionWorker(config=config, worker_id=options.get("worker_id"))

        if options.get("once"):
            dispatched = worker.run_once()
            abandoned = worker.shutdown()
            self.stdout.write(
                self.style.SUCCESS(f"Ciclo concluído: {dispatched} job(s) despachado(s), {abandoned} pendente(s).")
            )
            return

        def _stop(signum, _frame):
            logger.info(
                "sunat_worker_signal",
                extra={"event": "sunat_worker_signal", "signal": signum, "worker": worker.worker_id},
            )
            worker.request_stop()

        signal.signal(signal.SIGTERM, _stop)
        signal.signal(signal.SIGINT, _stop)

        self.stdout.write(
            f"Worker {worker.worker_id} iniciado (concorrência={config.concurrency}, "
            f"poll={config.poll_interval_seconds}s)."
        )
        worker.run_forever()
        self.stdout.write(self.style.SUCCESS("Worker encerrado."))
