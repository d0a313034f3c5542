# report_pipeline/main.py
#
# Extraction orchestrator and command-line entry point.
#
# Design decisions:
#   - run_extraction is the single entry point for one bounded extraction:
#     one source, one date range. It accepts the configuration values and an
#     optional httpx transport / sleep function so tests can run the whole
#     chain without the network.
#   - The orchestration follows a strict order:
#       1. Build the request (dates and filters validated, no I/O yet)
#       2. Resolve credentials (may call the token endpoint)
#       3. Open the staging area, execute with bounded retry and keep the
#          raw response body there
#       4. Classify the response
#       5. Write artifacts into the staging area, then promote atomically
#   - CSV projection is a convenience: NotTabularError downgrades to a
#     warning and the JSON artifact is still promoted.
#   - The CLI maps every ExtractionError to one ERROR line and exit status 1.
#     SIGTERM is converted to SystemExit so the staging area's cleanup runs.
#
# Invariant: no file appears under OUTPUT_DIR unless the response was fully
# validated and every artifact of the run was written.
from __future__ import annotations

import argparse
import signal
import sys
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from types import FrameType

import httpx

from report_pipeline.auth.provider import AuthProvider
from report_pipeline.config import PipelineConfig, SourceConfig, load_config, source_config_from_row
from report_pipeline.errors import ConfigurationError, DateRangeError, ExtractionError, NotTabularError
from report_pipeline.log import log, warn
from report_pipeline.output.artifacts import (
    RAW_CAPTURE_NAME,
    Artifact,
    promote,
    resolve_output_name,
    staging_area,
    write_bytes,
    write_json,
    write_text,
)
from report_pipeline.request.builder import DateRange, build_request, parse_date_range
from report_pipeline.sources.config_store import ConfigStore, open_config_store
from report_pipeline.transform.flatten import flatten_payload, write_csv
from report_pipeline.transport.classify import ClassifiedResponse, ResponseFormat, classify_response
from report_pipeline.transport.http_client import ResilientHttpClient


@dataclass(frozen=True)
class ExtractionResult:
    artifacts: list[Artifact]
    response_format: ResponseFormat
    attempts: int
    warnings: list[str] = field(default_factory=list)


def run_extraction(
    config: PipelineConfig,
    source: SourceConfig,
    date_range: DateRange,
    *,
    transport: httpx.BaseTransport | None = None,
    sleep: Callable[[float], None] = time.sleep,
    now: Callable[[], float] | None = None,
) -> ExtractionResult:
    """Execute one extraction and write its artifacts.

    Args:
        config:     Run-wide settings (retry policy, depth cap, default auth).
        source:     Configuration of the API source.
        date_range: Inclusive range to extract.
        transport:  Optional httpx transport used for every HTTP call.
        sleep:      Delay function between retries.
        now:        Clock for JWT timestamps.

    Returns:
        ExtractionResult listing the promoted artifacts.

    Raises:
        ExtractionError: any configuration, credential, request, transport,
            API or format failure. Nothing is written to OUTPUT_DIR in that case.
    """
    start, end = date_range.start.isoformat(), date_range.end.isoformat()
    log(f"API ID: {source.api_id}")
    log(f"Start Date: {start}")
    log(f"End Date: {end}")

    request = build_request(source, date_range)
    output_name = resolve_output_name(source.output_file_template, source.api_id, start, end)

    log(f"API Base URL: {source.base_url}")
    log(f"Output Directory: {source.output_dir}")
    log(f"JSON to CSV Conversion: {'Enabled' if source.json_to_csv else 'Disabled'}")

    credential = AuthProvider(config, transport=transport, now=now).resolve(source.auth)
    log(f"Authentication Type: {credential.scheme} (headers: {credential.redacted()})")

    client = ResilientHttpClient(config.retry, transport=transport, sleep=sleep)
    warnings: list[str] = []
    with staging_area(source.output_dir) as tmp_dir:
        log(f"Making API request: {request.method} {request.url}")
        outcome = client.execute(
            request.url,
            request.method,
            credential.as_dict(),
            request.body,
            proxy=source.proxy.url if source.proxy else None,
        )
        log(f"Received HTTP {outcome.status_code} after {outcome.attempt_count} attempt(s)")
        write_bytes(outcome.body, tmp_dir / RAW_CAPTURE_NAME)

        classified = classify_response(outcome, max_depth=config.json_max_depth)
        log(f"Detected {classified.format.value.upper()} response format: {classified.describe()}")

        staged = _stage_artifacts(source, classified, output_name, tmp_dir, warnings)
        artifacts = promote(staged, source.output_dir)

    for artifact in artifacts:
        log(f"Saved {artifact.path}")
        log(f"{artifact.path.suffix.lstrip('.').upper()} file checksum (MD5): {artifact.checksum}")
        log(f"{artifact.path.suffix.lstrip('.').upper()} file size: {artifact.size_bytes} bytes")

    return ExtractionResult(
        artifacts=artifacts,
        response_format=classified.format,
        attempts=outcome.attempt_count,
        warnings=warnings,
    )


def _stage_artifacts(
    source: SourceConfig,
    classified: ClassifiedResponse,
    output_name: str,
    tmp_dir: Path,
    warnings: list[str],
) -> list[Path]:
    if classified.format is ResponseFormat.CSV:
        line_count = len(classified.text.splitlines())
        if line_count < 2:
            message = "CSV file contains less than 2 lines, might be incomplete"
            warn(message)
            warnings.append(message)
        return [write_text(classified.text, tmp_dir / f"{output_name}.csv")]

    staged = [write_json(classified.payload, tmp_dir / f"{output_name}.json")]

    if not source.json_to_csv:
        log("JSON to CSV conversion is disabled")
        return staged

    log("Starting JSON to CSV conversion...")
    try:
        table = flatten_payload(classified.payload)
    except NotTabularError as exc:
        message = f"Could not create CSV version - {exc.message}"
        warn(message)
        warnings.append(message)
        return staged

    staged.append(write_csv(table, tmp_dir / f"{output_name}.csv"))
    log(f"Converted JSON to CSV with {len(table)} data rows and {len(table.header)} columns")
    return staged


def run_for_api_id(
    config: PipelineConfig,
    api_id: str,
    date_range: DateRange,
    *,
    store: ConfigStore | None = None,
    transport: httpx.BaseTransport | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ExtractionResult:
    """Look up *api_id* in the config store and run its extraction."""
    store = store or open_config_store(config.config_store_path)
    log(f"Retrieving configuration for API ID: {api_id}")
    row = store.fetch(api_id)
    if row is None:
        raise ConfigurationError(f"No configuration found for API ID: {api_id}")
    source = source_config_from_row(api_id, row)
    log("Configuration loaded successfully")
    return run_extraction(config, source, date_range, transport=transport, sleep=sleep)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="report-extract",
        description="Extract report data for one API source and date range.",
        epilog="Example: report-extract api123 2023-01-01 2023-01-31",
    )
    parser.add_argument("api_id", help="API identifier in the configuration store")
    parser.add_argument("start_date", help="Start date in YYYY-MM-DD format")
    parser.add_argument("end_date", help="End date in YYYY-MM-DD format")
    return parser


def _terminate(signum: int, frame: FrameType | None) -> None:
    raise SystemExit(128 + signum)


def main(argv: list[str] | None = None) -> int:
    """CLI entry point. Returns the process exit status."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        date_range = parse_date_range(args.start_date, args.end_date)
    except DateRangeError as exc:
        parser.error(exc.message)

    previous_handler = signal.signal(signal.SIGTERM, _terminate)
    log("Extraction started")
    try:
        config = load_config()
        run_for_api_id(config, args.api_id, date_range)
    except ExtractionError as exc:
        log(exc.message, "ERROR")
        return 1
    finally:
        signal.signal(signal.SIGTERM, previous_handler)

    log("API data download completed successfully")
    return 0


if __name__ == "__main__":
    sys.exit(main())
