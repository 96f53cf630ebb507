import gzip

import pytest
from docx import Document as DocxDocument

from lodestar_rag.common.exceptions import ExtractionError
from lodestar_rag.ingestion import extractors


def test_markdown_markup_and_code_fences_are_stripped(tmp_path):
    path = tmp_path / "notes.md"
    path.write_text("# Heading\n\nSome **bold**\ttext.\n```\ncode here\n```\n[link](http://x)", encoding="utf-8")

    text = extractors.extract(path)

    assert "#" not in text and "*" not in text and "code here" not in text
    assert "Heading" in text
    assert "Some bold text." in text
    assert "link http://x" in text


def test_html_keeps_text_nodes_only(tmp_path):
    path = tmp_path / "page.html"
    path.write_text("<html><body><h1>Title</h1>\n<p>First   para</p><p>Second</p></body></html>", encoding="utf-8")

    assert extractors.extract(path) == "Title First para Second"


def test_docx_paragraphs(tmp_path):
    path = tmp_path / "doc.docx"
    document = DocxDocument()
    document.add_paragraph("First paragraph.")
    document.add_paragraph("Second paragraph.")
    document.save(str(path))

    assert extractors.extract(path) == "First paragraph. Second paragraph."


def test_csv_whole_file_rendering(tmp_path):
    path = tmp_path / "data.csv"
    path.write_text("name,age\nAda,36\nAlan,41\n", encoding="utf-8")

    text = extractors.extract(path)

    assert text.splitlines() == ["Headers: name, age", "name: Ada | age: 36", "name: Alan | age: 41"]


def test_gzipped_csv_rows(tmp_path):
    path = tmp_path / "data.csv.gz"
    with gzip.open(path, "wt", encoding="utf-8") as f:
        f.write("id;title\n1;One\n2;Two\n")

    headers, rows = extractors.read_csv_rows(path, delimiter=";", headers="auto")

    assert headers == ["id", "title"]
    assert rows == [{"id": "1", "title": "One"}, {"id": "2", "title": "Two"}]
    assert extractors.extension_of(path) == ".csv.gz"
    assert extractors.is_csv(path)


def test_headerless_rows_use_column_numbers(tmp_path):
    path = tmp_path / "plain.csv"
    path.write_text("a,b\nc,d\n", encoding="utf-8")

    headers, rows = extractors.read_csv_rows(path, headers="false")

    assert headers is None
    assert rows == [["a", "b"], ["c", "d"]]
    assert extractors.csv_row_text(rows[1], headers) == "col1: c | col2: d"


def test_normalize_text_by_format():
    assert extractors.normalize_text("<b>bold</b> move", "html") == "bold move"
    assert extractors.normalize_text("## Title *x*", "markdown") == "Title x"
    assert extractors.normalize_text("plain\ttext", None) == "plain text"


@pytest.mark.parametrize(
    "name, supported",
    [("a.txt", True), ("a.MD", True), ("a.markdown", True), ("a.htm", True), ("a.pdf", True), ("a.exe", False)],
)
def test_supported_extensions(name, supported):
    assert extractors.is_supported(name) is supported


def test_unreadable_file_raises_extraction_error(tmp_path):
    path = tmp_path / "broken.docx"
    path.write_bytes(b"not a zip package")

    with pytest.raises(ExtractionError) as excinfo:
        extractors.extract(path)

    assert excinfo.value.details["path"] == str(path)
