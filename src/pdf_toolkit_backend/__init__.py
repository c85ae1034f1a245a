"""
PDF Toolkit Backend - job and file lifecycle server for PDF manipulation

This package provides a FastAPI-based web service that stores uploaded files
for a limited time and runs one-off transformation jobs on them:

- File uploads with a 24-hour expiry
- Merge, split, rotate, compress and office-format conversion jobs
- Job status polling and file downloads
- Hourly retention sweeps of expired files and stale job records

PDF page manipulation is delegated to pypdf; office conversion and
compression are delegated to LibreOffice (``soffice``) and Ghostscript when
they are installed.

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - job_manager: Job lifecycle and worker pool
    - pipelines: The per-type job bodies
    - registry: File and job records
    - storage: Filesystem blob storage
    - converters: External tool adapters
    - sweeper: Retention sweeps
    - configuration: OmegaConf defaults and overrides

Usage:
    Run the API server with:
        uvicorn pdf_toolkit_backend.main:app --host 0.0.0.0 --port 4000
"""

__version__ = "0.1.0"
