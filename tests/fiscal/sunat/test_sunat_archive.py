import io
import zipfile
from datetime import date

import pytest

from fiscal.archive import (
    build_archive,
    build_filename,
    build_summary_filename,
    extract_archive,
    zip_name_for,
)
from fiscal.exceptions import ArchiveError


def test_build_filename_segue_padrao_sunat():
    assert build_filename("20123456789", "01", "F001", 123) == "20123456789-01-F001-00000123.xml"
    assert build_filename("20123456789", "03", "B001", "7") == "20123456789-03-B001-00000007.xml"


def test_build_summary_filename_usa_data_e_numero_com_5_digitos():
    nome = build_summary_filename("20123456789", "RC", date(2024, 3, 9), 12)
    assert nome == "20123456789-RC-20240309-00012.xml"


def test_zip_name_for_troca_extensao():
    assert zip_name_for("20123456789-01-F001-00000001.xml") == "20123456789-01-F001-00000001.zip"
    assert zip_name_for("arquivo.zip") == "arquivo.zip"
    assert zip_name_for("sem-extensao") == "sem-extensao.zip"


@pytest.mark.parametrize(
    "payload",
    [
        b"<Invoice/>",
        "<Invoice><cbc:Note>Ñandú açaí</cbc:Note></Invoice>".encode("utf-8"),
        bytes(range(256)) * 50,
    ],
)
def test_roundtrip_preserva_conteudo_e_nome(payload):
    filename = "20123456789-01-F001-00000001.xml"

    container = build_archive(payload, filename)
    content, name = extract_archive(container)

    assert content == payload
    assert name == filename


def test_build_archive_e_reprodutivel_byte_a_byte():
    payload = b"<Invoice><ID>F001-1</ID></Invoice>"
    assert build_archive(payload, "a.xml") == build_archive(payload, "a.xml")


def test_build_archive_gera_uma_unica_entrada_comprimida():
    container = build_archive(b"<Invoice/>" * 100, "doc.xml")

    with zipfile.ZipFile(io.BytesIO(container)) as zf:
        infos = zf.infolist()

    assert len(infos) == 1
    assert infos[0].filename == "doc.xml"
    assert infos[0].compress_type == zipfile.ZIP_DEFLATED


def test_build_archive_rejeita_conteudo_vazio():
    with pytest.raises(ArchiveError) as exc:
        build_archive(b"", "doc.xml")
    assert exc.value.code == "ARCHIVE_ERROR"


@pytest.mark.parametrize("container", [b"", b"isto nao e um zip", b"PK\x03\x04quebrado"])
def test_extract_archive_rejeita_container_vazio_ou_corrompido(container):
    with pytest.raises(ArchiveError):
        extract_archive(container)


def test_extract_archive_ignora_pasta_e_prefere_xml():
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, mode="w") as zf:
        zf.writestr("dummy/", b"")
        zf.writestr("leiame.txt", b"nada")
        zf.writestr("R-20123456789-01-F001-00000001.xml", b"<ApplicationResponse/>")

    content, name = extract_archive(buffer.getvalue())

    assert name == "R-20123456789-01-F001-00000001.xml"
    assert content == b"<ApplicationResponse/>"


def test_extract_archive_sem_arquivos_levanta_erro():
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, mode="w") as zf:
        zf.writestr("dummy/", b"")

    with pytest.raises(ArchiveError):
        extract_archive(buffer.getvalue())
