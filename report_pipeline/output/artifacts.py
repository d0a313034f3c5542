# report_pipeline/output/artifacts.py
#
# Output artifacts: name templating, a scoped staging area, JSON/CSV writes,
# atomic promotion and checksums.
#
# Design decisions:
#   - Atomicity is guaranteed by writing every artifact of a run into a
#     staging directory created inside OUTPUT_DIR (same filesystem) and only
#     moving files to their final names with Path.replace once all of them
#     have been written. A crash or signal mid-run leaves previous outputs
#     untouched and never exposes a half-written file.
#   - staging_area() is a context manager whose exit always removes the
#     staging directory: success, handled error, KeyboardInterrupt or the
#     SystemExit raised by the CLI's SIGTERM handler.
#   - The output-name template only knows {API_ID}, {START_DATE} and
#     {END_DATE}. Any other placeholder is a configuration error rather than a
#     literal brace in a filename.
#   - MD5 is computed on the final file so the checksum matches what
#     downstream consumers read.
from __future__ import annotations

import hashlib
import json
import re
import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from report_pipeline.errors import ConfigurationError
from report_pipeline.log import log

_PLACEHOLDER_RE = re.compile(r"\{([^{}]*)\}")
_CHUNK_SIZE = 1024 * 1024

# Raw response body kept in the staging area for the duration of a run.
# Never promoted.
RAW_CAPTURE_NAME = "response.raw"


@dataclass(frozen=True)
class Artifact:
    path: Path
    checksum: str
    size_bytes: int


def resolve_output_name(template: str, api_id: str, start_date: str, end_date: str) -> str:
    """Fill the OUTPUT_FILE_NAME template.

    Raises:
        ConfigurationError: unknown placeholder, or the name resolves to
            something that is not a plain file name.
    """
    values = {"API_ID": api_id, "START_DATE": start_date, "END_DATE": end_date}

    def _substitute(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in values:
            raise ConfigurationError(f"Unknown placeholder {{{name}}} in OUTPUT_FILE_NAME {template!r}")
        return values[name]

    resolved = _PLACEHOLDER_RE.sub(_substitute, template).strip()
    if not resolved or "/" in resolved or "\\" in resolved or resolved in (".", ".."):
        raise ConfigurationError(f"OUTPUT_FILE_NAME {template!r} does not resolve to a file name")
    return resolved


@contextmanager
def staging_area(output_dir: Path) -> Iterator[Path]:
    """Yield a private temporary directory inside *output_dir*; always removed on exit."""
    output_dir.mkdir(parents=True, exist_ok=True)
    tmp_dir = Path(tempfile.mkdtemp(prefix=".extract-", dir=output_dir))
    try:
        yield tmp_dir
    finally:
        log("Performing cleanup...")
        shutil.rmtree(tmp_dir, ignore_errors=True)


def write_json(payload: Any, path: Path) -> Path:
    """Pretty-print a decoded JSON value to *path*."""
    with path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, ensure_ascii=False)
        fh.write("\n")
    return path


def write_text(text: str, path: Path) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def write_bytes(raw: bytes, path: Path) -> Path:
    path.write_bytes(raw)
    return path


def md5_checksum(path: Path) -> str:
    digest = hashlib.md5(usedforsecurity=False)
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def promote(staged: list[Path], output_dir: Path) -> list[Artifact]:
    """Move staged files to *output_dir* under the same names, atomically per file.

    Returns:
        One Artifact per promoted file, with checksum and size of the final file.
    """
    artifacts: list[Artifact] = []
    for tmp_path in staged:
        final_path = output_dir / tmp_path.name
        tmp_path.replace(final_path)
        artifacts.append(
            Artifact(path=final_path, checksum=md5_checksum(final_path), size_bytes=final_path.stat().st_size)
        )
    return artifacts
