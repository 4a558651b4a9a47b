# fiscal/sunat_codes.py
"""
Tabela de códigos de retorno da SUNAT.

Os ~40 códigos que a SUNAT devolve em SOAP faults são dados, não lógica:
ficam em data/sunat_codes.json (ou no arquivo apontado por
SUNAT_SUBMISSION["REMOTE_CODES_PATH"]) e aqui só existe a consulta.

Cada código tem um `kind`:
  - transient: reenviar com backoff (SUNAT indisponível, fila cheia, etc).
  - rejection: decisão de negócio sobre o conteúdo; terminal, documento REJECTED.
  - fatal: erro técnico que se repetiria (credenciais, nome de arquivo);
    terminal, documento ERROR.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, Mapping

from fiscal.conf import get_submission_config


KIND_TRANSIENT = "transient"
KIND_REJECTION = "rejection"
KIND_FATAL = "fatal"

VALID_KINDS = {KIND_TRANSIENT, KIND_REJECTION, KIND_FATAL}

# Tamanho das colunas remote_code (documento e auditoria)
REMOTE_CODE_MAX_LENGTH = 10

_DIGITS_AT_END = re.compile(r"(\d+)\s*$")


@dataclass(frozen=True)
class RemoteCodeDef:
    """
    Definição de um código de retorno da SUNAT.
    """
    code: str
    message: str
    kind: str

    @property
    def retryable(self) -> bool:
        return self.kind == KIND_TRANSIENT


def normalize_code(raw: str | int | None) -> str:
    """
    Extrai o código numérico de um faultcode SOAP.

    A SUNAT devolve variações como "soap-env:Client.0111", "env:Server",
    "0111" ou "2335". Sem dígitos no final devolve "" (o faultcode bruto
    fica só no `raw` do erro).
    """
    if raw is None:
        return ""
    text = str(raw).strip()
    match = _DIGITS_AT_END.search(text)
    if not match:
        return ""
    digits = match.group(1)
    # Códigos de exceção vêm com 4 dígitos (0100..0999)
    return digits.zfill(4) if len(digits) < 4 else digits


def clip_remote_code(value: str | None) -> str | None:
    """
    Valor pronto para as colunas remote_code (vazio → None).
    """
    if not value:
        return None
    return str(value)[:REMOTE_CODE_MAX_LENGTH]


class RemoteCodeTable:
    """
    Consulta código → (mensagem, classificação).
    """

    def __init__(self, codes: Mapping[str, RemoteCodeDef]):
        self._codes: Dict[str, RemoteCodeDef] = dict(codes)

    def __len__(self) -> int:
        return len(self._codes)

    def __contains__(self, code: str) -> bool:
        return normalize_code(code) in self._codes

    @classmethod
    def from_file(cls, path: str | Path) -> "RemoteCodeTable":
        with open(path, encoding="utf-8") as fh:
            payload = json.load(fh)

        items = payload.get("codes") if isinstance(payload, dict) else payload
        if not isinstance(items, list):
            raise ValueError(f"Tabela de códigos SUNAT inválida em {path}.")

        codes: Dict[str, RemoteCodeDef] = {}
        for item in items:
            code = normalize_code(item["code"])
            kind = str(item.get("kind") or KIND_TRANSIENT).lower()
            if kind not in VALID_KINDS:
                raise ValueError(f"Classificação '{kind}' inválida para o código {code}.")
            codes[code] = RemoteCodeDef(code=code, message=item.get("message") or "", kind=kind)
        return cls(codes)

    def lookup(self, raw_code: str | int | None) -> RemoteCodeDef:
        """
        Retorna a definição do código. Códigos fora da tabela:
          - 2000..3999 (faixa de rechazo da SUNAT) → rejection
          - qualquer outro → transient (o limite de tentativas segura o resto)
        """
        code = normalize_code(raw_code)
        known = self._codes.get(code)
        if known is not None:
            return known

        kind = KIND_TRANSIENT
        if code.isdigit() and 2000 <= int(code) <= 3999:
            kind = KIND_REJECTION
        return RemoteCodeDef(code=code, message=f"Código {code}" if code else "", kind=kind)

    def message_for(self, raw_code: str | int | None) -> str:
        return self.lookup(raw_code).message


@lru_cache(maxsize=8)
def _load_table(path: str) -> RemoteCodeTable:
    return RemoteCodeTable.from_file(path)


def get_code_table() -> RemoteCodeTable:
    return _load_table(get_submission_config().remote_codes_path)
