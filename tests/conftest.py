"""
Pytest configuration and fixtures for PDF Toolkit Backend tests.
"""

import io
import os
import shutil
import stat
import tempfile

import pytest
from fastapi.testclient import TestClient
from pypdf import PdfWriter

# Set test environment variables before importing the app
os.environ["PDF_TOOLKIT_DATA_DIR"] = tempfile.mkdtemp(prefix="pdf_toolkit_test_data_")
os.environ["PDF_TOOLKIT_OFFICE_CANDIDATES"] = "pdf-toolkit-missing-soffice"
os.environ["PDF_TOOLKIT_COMPRESSION_CANDIDATES"] = "pdf-toolkit-missing-gs"
os.environ["PDF_TOOLKIT_WAIT_FOR_JOBS"] = "true"
os.environ["PDF_TOOLKIT_LOG_LEVEL"] = "WARNING"

from pdf_toolkit_backend.configuration import load_settings
from pdf_toolkit_backend.main import app, get_job_manager, get_services, services
from pdf_toolkit_backend.services import build_services

MISSING_OFFICE = "pdf-toolkit-missing-soffice"
MISSING_GS = "pdf-toolkit-missing-gs"

FAKE_SOFFICE = """#!/bin/sh
# --headless --convert-to TARGET --outdir DIR INPUT
target="$3"
outdir="$5"
input="$6"
name=$(basename "$input")
cp "$input" "$outdir/${name%.*}.$target"
"""

FAKE_GS = """#!/bin/sh
out=""
for arg in "$@"; do
  case "$arg" in
    -sOutputFile=*) out="${arg#-sOutputFile=}" ;;
  esac
  last="$arg"
done
cp "$last" "$out"
"""

FAILING_TOOL = """#!/bin/sh
echo "boom" >&2
exit 3
"""

SILENT_TOOL = """#!/bin/sh
exit 0
"""

SLOW_TOOL = """#!/bin/sh
exec sleep 5
"""

TOOL_SCRIPTS = {
    "soffice": FAKE_SOFFICE,
    "gs": FAKE_GS,
    "failing": FAILING_TOOL,
    "silent": SILENT_TOOL,
    "slow": SLOW_TOOL,
}


@pytest.fixture(scope="session", autouse=True)
def test_dirs():
    """Cleanup the app's data directory after all tests."""
    data_dir = os.environ["PDF_TOOLKIT_DATA_DIR"]
    yield {"data": data_dir}
    services.job_manager.shutdown()
    shutil.rmtree(data_dir, ignore_errors=True)


@pytest.fixture
def client():
    """Create a test client for the FastAPI app."""
    return TestClient(app)


def build_pdf(pages: int, width: int = 612, height: int = 792) -> bytes:
    """
    Build a PDF with blank pages of increasing width.

    Page ``i`` is ``width + i`` points wide, so pages can be told apart after
    merging or splitting.
    """
    writer = PdfWriter()
    for i in range(pages):
        writer.add_blank_page(width=width + i, height=height)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


@pytest.fixture
def make_pdf():
    return build_pdf


@pytest.fixture
def upload(client):
    """Upload ``(name, bytes)`` pairs and return the created file records."""

    def _upload(*named_files):
        response = client.post(
            "/api/upload",
            files=[("files", (name, data, "application/pdf")) for name, data in named_files],
        )
        assert response.status_code == 200, response.text
        return response.json()["files"]

    return _upload


@pytest.fixture
def fake_tool(tmp_path):
    """Write an executable fake tool (see TOOL_SCRIPTS) and return its absolute path."""
    tools_dir = tmp_path / "tools"
    tools_dir.mkdir()

    def _fake_tool(name: str, behaviour: str) -> str:
        path = tools_dir / name
        path.write_text(TOOL_SCRIPTS[behaviour], encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)

    return _fake_tool


@pytest.fixture
def make_services(tmp_path):
    """Build an isolated service graph rooted in ``tmp_path``."""
    built = []

    def _make_services(office=(MISSING_OFFICE,), compression=(MISSING_GS,), timeout=30, **overrides):
        settings = load_settings(
            overrides={
                "storage": {"root": str(tmp_path / "data")},
                "converters": {
                    "timeout_seconds": timeout,
                    "office": {"candidates": list(office)},
                    "compression": {"candidates": list(compression)},
                },
                **overrides,
            },
            environ={},
        )
        svc = build_services(settings)
        built.append(svc)
        return svc

    yield _make_services
    for svc in built:
        svc.job_manager.shutdown()


@pytest.fixture
def svc(make_services):
    return make_services()


@pytest.fixture
def pdf_file(svc):
    """Register a PDF in the isolated registry and return its record."""

    def _pdf_file(name: str, pages: int, width: int = 612):
        return svc.files.register(name, build_pdf(pages, width), "application/pdf")

    return _pdf_file


@pytest.fixture
def configured_client(make_services):
    """
    Route the app through an isolated service graph built with config overrides.

    Returns a ``(client, services)`` pair; accepts the same arguments as
    ``make_services``.
    """

    def _configured_client(**kwargs):
        svc = make_services(**kwargs)
        app.dependency_overrides[get_services] = lambda: svc
        app.dependency_overrides[get_job_manager] = lambda: svc.job_manager
        return TestClient(app), svc

    yield _configured_client
    app.dependency_overrides.clear()
