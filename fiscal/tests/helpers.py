# fiscal/tests/helpers.py
"""
Dublês de teste do pipeline SUNAT (executor síncrono e client roteirizável).
"""

from concurrent.futures import Future

from fiscal.sunat_clients import SubmitResult, TicketStatus, build_ack_container



class InlineExecutor:
    """
    Executor que roda a tarefa na hora, na thread do teste.

    Mantém o worker testável dentro da transação do pytest-django.
    """

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):
        self.submitted += 1
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future

    def shutdown(self, wait=True, cancel_futures=False):
        return None


class FakeSunatClient:
    """
    Client SUNAT roteirizável.

    Cada fila (submit / submit_batch / poll_ticket) recebe valores ou
    exceções; exceções são levantadas na chamada. Fila vazia → aceita.
    """

    def __init__(self):
        self.submit_script = []
        self.batch_script = []
        self.poll_script = []
        self.calls = []

    # roteiro ----------------------------------------------------------
    def will_accept(self, code="0", description="La Factura ha sido aceptada", notes=()):
        self.submit_script.append(("ack", code, description, tuple(notes)))
        return self

    def will_reject(self, code="2017", description="El numero de documento de identidad del receptor debe ser RUC"):
        self.submit_script.append(("ack", code, description, ()))
        return self

    def will_raise(self, exc):
        self.submit_script.append(exc)
        return self

    def will_return_ticket(self, ticket="202400000001"):
        self.submit_script.append(("ticket", ticket))
        return self

    def will_poll(self, *statuses):
        self.poll_script.extend(statuses)
        return self

    # protocolo --------------------------------------------------------
    def submit(self, filename, archive):
        self.calls.append(("submit", filename, archive))
        step = self.submit_script.pop(0) if self.submit_script else ("ack", "0", "Aceptado", ())
        if isinstance(step, Exception):
            raise step
        if step[0] == "ticket":
            return SubmitResult(ticket=step[1])
        _kind, code, description, notes = step
        return SubmitResult(ack_container=build_ack_container(filename, code=code, description=description, notes=notes))

    def submit_batch(self, filename, archive):
        self.calls.append(("submit_batch", filename, archive))
        step = self.batch_script.pop(0) if self.batch_script else "202400000099"
        if isinstance(step, Exception):
            raise step
        return step

    def poll_ticket(self, ticket):
        self.calls.append(("poll_ticket", ticket))
        step = self.poll_script.pop(0) if self.poll_script else accepted_ticket_status(ticket)
        if isinstance(step, Exception):
            raise step
        return step

    def calls_of(self, operation):
        return [c for c in self.calls if c[0] == operation]


def accepted_ticket_status(ticket="ticket", code="0", description="Aceptado"):
    return TicketStatus(
        status_code="0",
        ack_container=build_ack_container(f"{ticket}.xml", code=code, description=description),
        still_processing=False,
    )


def processing_ticket_status():
    return TicketStatus(status_code="98", ack_container=None, still_processing=True)
