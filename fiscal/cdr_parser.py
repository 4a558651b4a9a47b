# fiscal/cdr_parser.py
"""
Leitura do CDR (Constancia de Recepción) devolvido pela SUNAT.

O CDR é um ApplicationResponse UBL 2.0 zipado (R-{nome}.xml). Interessa:
  - cbc:ResponseCode / cbc:Description da primeira DocumentResponse
  - cbc:Note (observações; o documento continua aceito)

Regras:
  - Aceito se o ResponseCode começa com "0" (0 = aceito, 0xxx = aceito
    com observações). Qualquer outro valor = rechazo.
  - Container vazio/corrompido ou sem ResponseCode → AckParseError.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import List

from fiscal.archive import extract_archive
from fiscal.exceptions import AckParseError, ArchiveError


@dataclass
class AckOutcome:
    accepted: bool
    code: str
    message: str
    notes: List[str] = field(default_factory=list)


def _first_text(root: ET.Element, local_name: str) -> str | None:
    node = root.find(f".//{{*}}{local_name}")
    if node is None or node.text is None:
        return None
    return node.text.strip()


def parse_ack_xml(xml_bytes: bytes) -> AckOutcome:
    if not xml_bytes or not xml_bytes.strip():
        raise AckParseError("CDR sem conteúdo XML.")

    try:
        root = ET.fromstring(xml_bytes)
    except ET.ParseError as exc:
        raise AckParseError(f"CDR com XML inválido: {exc}") from exc

    code = _first_text(root, "ResponseCode")
    if not code:
        raise AckParseError("CDR sem ResponseCode.")

    message = _first_text(root, "Description") or ""
    notes = [
        note.text.strip()
        for note in root.iter()
        if note.tag.rsplit("}", 1)[-1] == "Note" and note.text and note.text.strip()
    ]

    return AckOutcome(
        accepted=code.startswith("0"),
        code=code,
        message=message,
        notes=notes,
    )


def parse_ack(container: bytes) -> AckOutcome:
    """
    Abre o ZIP do CDR e interpreta o XML de resposta.
    """
    try:
        xml_bytes, _name = extract_archive(container)
    except ArchiveError as exc:
        raise AckParseError(f"CDR ilegível: {exc.message}") from exc
    return parse_ack_xml(xml_bytes)
