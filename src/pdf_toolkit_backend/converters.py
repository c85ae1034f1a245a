"""
Adapters over external conversion tools.

Two capabilities share one contract: an ordered list of candidate executables
is resolved once against ``PATH`` and each installed candidate is tried in
turn until one produces its expected output file.

- ``ConverterUnavailable``: no candidate is installed (feature missing)
- ``ConversionFailed``: a candidate ran but failed, timed out or wrote nothing
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Callable, Dict, List, Optional, Sequence

from .errors import ConversionFailed, ConverterUnavailable

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 300


@dataclass(frozen=True)
class RunResult:
    ok: bool
    returncode: Optional[int]
    stderr: str
    timed_out: bool
    ms: int


def run_command(cmd: List[str], timeout_s: int) -> RunResult:
    start = time.perf_counter()
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout_s,
        )
    except subprocess.TimeoutExpired:
        return RunResult(False, None, "", True, int((time.perf_counter() - start) * 1000))
    except OSError as exc:
        return RunResult(False, None, str(exc), False, int((time.perf_counter() - start) * 1000))
    return RunResult(
        ok=result.returncode == 0,
        returncode=result.returncode,
        stderr=(result.stderr or "").strip(),
        timed_out=False,
        ms=int((time.perf_counter() - start) * 1000),
    )


class ToolCandidates:
    """
    Ordered executable names for one capability, resolved lazily and cached.

    Entries may be bare names looked up on ``PATH`` or absolute paths.
    """

    def __init__(
        self,
        label: str,
        names: Sequence[str],
        which: Callable[[str], Optional[str]] = shutil.which,
    ) -> None:
        self.label = label
        self.names = list(names)
        self._which = which
        self._resolved: Optional[List[str]] = None
        self._lock = Lock()

    def installed(self) -> List[str]:
        with self._lock:
            if self._resolved is None:
                resolved = []
                for name in self.names:
                    found = self._which(name)
                    if found:
                        resolved.append(found)
                self._resolved = resolved
                if resolved:
                    logger.info(f"{self.label}: using {resolved[0]} (of {len(resolved)} installed)")
                else:
                    logger.warning(f"{self.label}: none of {self.names} found on PATH")
            return list(self._resolved)

    def preferred(self) -> Optional[str]:
        installed = self.installed()
        return installed[0] if installed else None

    def reset(self) -> None:
        with self._lock:
            self._resolved = None


@dataclass(frozen=True)
class ToolOutput:
    path: Path
    tool: str


class ConverterAdapter:
    def __init__(
        self,
        office: ToolCandidates,
        compression: ToolCandidates,
        *,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        pdf_settings: str = "/ebook",
    ) -> None:
        self.office = office
        self.compression = compression
        self.timeout_seconds = timeout_seconds
        self.pdf_settings = pdf_settings

    @classmethod
    def from_settings(cls, settings) -> "ConverterAdapter":
        conv = settings.converters
        return cls(
            ToolCandidates("office converter", conv.office.candidates),
            ToolCandidates("pdf compressor", conv.compression.candidates),
            timeout_seconds=int(conv.timeout_seconds),
            pdf_settings=str(conv.compression.pdf_settings),
        )

    def describe(self) -> Dict[str, Optional[str]]:
        return {
            "office": self.office.preferred(),
            "compression": self.compression.preferred(),
        }

    def _try_candidates(
        self,
        candidates: ToolCandidates,
        build_cmd: Callable[[str], List[str]],
        expected_output: Path,
    ) -> ToolOutput:
        installed = candidates.installed()
        if not installed:
            raise ConverterUnavailable(
                f"{candidates.label} is not installed (looked for: {', '.join(candidates.names)})"
            )

        failures = []
        for tool in installed:
            result = run_command(build_cmd(tool), self.timeout_seconds)
            if result.timed_out:
                failures.append(f"{tool}: timed out after {self.timeout_seconds}s")
            elif not result.ok:
                failures.append(f"{tool}: exit code {result.returncode} {result.stderr[:300]}".rstrip())
            elif not expected_output.is_file():
                failures.append(f"{tool}: reported success but {expected_output.name} was not written")
            else:
                logger.info(f"{candidates.label}: {tool} produced {expected_output.name} in {result.ms}ms")
                return ToolOutput(path=expected_output, tool=tool)
            logger.warning(f"{candidates.label}: {failures[-1]}")

        raise ConversionFailed("; ".join(failures))

    def convert_document(self, input_path: Path, target_format: str, output_dir: Path) -> ToolOutput:
        """
        Convert ``input_path`` to ``target_format`` with the office converter.

        The converter names its output after the input stem, so the result is
        always ``output_dir / f"{input_path.stem}.{target_format}"``.
        """
        expected = output_dir / f"{input_path.stem}.{target_format}"

        def build(tool: str) -> List[str]:
            return [
                tool,
                "--headless",
                "--convert-to",
                target_format,
                "--outdir",
                str(output_dir),
                str(input_path),
            ]

        return self._try_candidates(self.office, build, expected)

    def compress_document(self, input_path: Path, output_path: Path) -> ToolOutput:
        def build(tool: str) -> List[str]:
            return [
                tool,
                "-sDEVICE=pdfwrite",
                "-dCompatibilityLevel=1.4",
                f"-dPDFSETTINGS={self.pdf_settings}",
                "-dNOPAUSE",
                "-dBATCH",
                "-dQUIET",
                f"-sOutputFile={output_path}",
                str(input_path),
            ]

        return self._try_candidates(self.compression, build, output_path)
