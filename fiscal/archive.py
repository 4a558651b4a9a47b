# fiscal/archive.py
"""
Empacotamento do XML assinado no ZIP exigido pela SUNAT.

A SUNAT só aceita o comprobante comprimido, com um único XML dentro e nome
no padrão {RUC}-{TIPO}-{SERIE}-{NUMERO}.xml. O ZIP precisa ser
reprodutível byte a byte (mesma entrada → mesmo container), então a data e
as permissões da entrada são fixas.
"""

from __future__ import annotations

import io
import zipfile
from datetime import date
from typing import Tuple

from fiscal.exceptions import ArchiveError


# Menor data representável no formato ZIP
_FIXED_DATE_TIME = (1980, 1, 1, 0, 0, 0)
_FIXED_EXTERNAL_ATTR = 0o100644 << 16


def build_filename(ruc: str, type_code: str, series: str, number: int | str) -> str:
    """
    Nome do XML do comprobante: {RUC}-{TIPO}-{SERIE}-{NUMERO}.xml

    >>> build_filename("20123456789", "01", "F001", 123)
    '20123456789-01-F001-00000123.xml'
    """
    padded = str(number).strip().zfill(8)
    return f"{ruc}-{type_code}-{series}-{padded}.xml"


def build_summary_filename(ruc: str, series: str, issue_date: date, number: int | str) -> str:
    """
    Nome do XML de resumo diário / comunicação de baixa:
    {RUC}-{SERIE}-{AAAAMMDD}-{NUMERO 5 dígitos}.xml
    """
    padded = str(number).strip().zfill(5)
    return f"{ruc}-{series}-{issue_date.strftime('%Y%m%d')}-{padded}.xml"


def zip_name_for(filename: str) -> str:
    """
    O fileName enviado no SOAP é o nome do ZIP, não o do XML.
    """
    if filename.lower().endswith(".xml"):
        return filename[:-4] + ".zip"
    if filename.lower().endswith(".zip"):
        return filename
    return f"{filename}.zip"


def build_archive(payload: bytes, filename: str) -> bytes:
    """
    Gera o ZIP com exatamente uma entrada `filename` contendo `payload`.
    """
    if not payload:
        raise ArchiveError("Conteúdo assinado vazio; nada para empacotar.")
    if not filename:
        raise ArchiveError("Nome de arquivo obrigatório para o ZIP.")

    info = zipfile.ZipInfo(filename=filename, date_time=_FIXED_DATE_TIME)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.external_attr = _FIXED_EXTERNAL_ATTR
    info.create_system = 3

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, mode="w") as zf:
        zf.writestr(info, payload)
    return buffer.getvalue()


def extract_archive(container: bytes) -> Tuple[bytes, str]:
    """
    Operação inversa: devolve (conteúdo, nome) da primeira entrada XML do ZIP.

    Usada também para abrir o CDR devolvido pela SUNAT, que vem como
    R-{nome}.xml dentro de um ZIP (às vezes acompanhado de uma pasta vazia
    "dummy/"). Sem entrada .xml, devolve a primeira entrada com conteúdo.
    """
    if not container:
        raise ArchiveError("Container ZIP vazio.")

    try:
        with zipfile.ZipFile(io.BytesIO(container)) as zf:
            entries = [i for i in zf.infolist() if not i.is_dir()]
            if not entries:
                raise ArchiveError("Container ZIP não possui arquivos.")

            chosen = next(
                (i for i in entries if i.filename.lower().endswith(".xml")),
                entries[0],
            )
            return zf.read(chosen), chosen.filename
    except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError, ValueError) as exc:
        raise ArchiveError(f"Container ZIP corrompido: {exc}") from exc
