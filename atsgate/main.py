"""Main entry point for the atsgate application.

Sets up the Typer CLI application, performs dependency injection (Composition Root),
and defines the CLI commands. Every command builds its own services and shuts
their background sweeps down before returning.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Any, Dict, Optional

import typer

# --- Infrastructure Layer ---
from atsgate.core.services.analysis_service import AnalysisService
from atsgate.domain.models.analysis import STATUS_NO_KEYWORDS, STATUS_RATE_LIMITED, AnalysisOutcome
from atsgate.domain.models.common import Identifier
from atsgate.infrastructure.ai.gemini_client import GeminiClient
from atsgate.infrastructure.cache.caching_service import TTLCache
from atsgate.infrastructure.cli.display import ConsoleDisplay
from atsgate.infrastructure.config.settings import (
    GovernanceSettings,
    get_config,
    get_gemini_api_key,
    is_configured,
    load_configuration,
    safe_config,
)
from atsgate.infrastructure.monitoring.event_recorder import EventRecorder
from atsgate.infrastructure.monitoring.logger_setup import DEFAULT_LOG_FORMAT, parse_log_level, setup_logging
from atsgate.infrastructure.resilience.api_retry import ResilientClient, UpstreamHardFailure
from atsgate.infrastructure.resilience.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

_STARTED_AT = time.monotonic()

GENERIC_FAILURE_MESSAGE = "Analysis failed. Please try again."

# --- Dependency Injection Container (Manual) ---

def create_dependencies() -> Dict[str, Any]:
    """Creates and wires up all dependencies for one command.

    This acts as the Composition Root.

    Raises:
        ValueError: If the upstream API key is not configured.
    """
    load_configuration()
    settings = GovernanceSettings.from_config()

    recorder = EventRecorder(capacity=settings.recorder_capacity)
    setup_logging(
        log_level=parse_log_level(get_config('logging.level')),
        log_format=get_config('logging.format', DEFAULT_LOG_FORMAT),
        log_file=get_config('logging.file'),
        recorder=recorder,
    )

    dependencies: Dict[str, Any] = {'settings': settings, 'recorder': recorder}
    dependencies['ui'] = ConsoleDisplay()
    dependencies['rate_limiter'] = RateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
        sweep_interval=settings.rate_limit_sweep_interval_seconds,
    )
    dependencies['cache'] = TTLCache(
        default_ttl=settings.cache_ttl_seconds,
        sweep_interval=settings.cache_sweep_interval_seconds,
    )
    dependencies['model_client'] = GeminiClient(
        api_key=get_gemini_api_key(),
        model=settings.gemini_model,
        base_url=settings.gemini_base_url,
    )
    dependencies['client'] = ResilientClient(dependencies['model_client'], recorder=recorder)
    dependencies['analysis_service'] = AnalysisService(
        rate_limiter=dependencies['rate_limiter'],
        cache=dependencies['cache'],
        client=dependencies['client'],
        recorder=recorder,
        settings=settings,
    )
    logger.info("All dependencies initialized successfully.")
    return dependencies

async def run_analysis(dependencies: Dict[str, Any], identifier: str, resume: str, job_desc: str) -> AnalysisOutcome:
    """Runs one analysis with the limiter and cache sweeps active for its duration."""
    async with dependencies['rate_limiter'], dependencies['cache']:
        return await dependencies['analysis_service'].analyze(Identifier(identifier), resume, job_desc)

def build_health_report(recorder: Optional[EventRecorder] = None) -> Dict[str, Any]:
    """Status, uptime and safe configuration, plus event stats when a recorder is given.

    The recorder lives in process memory, so only a long-running host has
    stats worth reporting.
    """
    report = {
        'status': 'ok' if is_configured() else 'degraded',
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'uptime_seconds': int(time.monotonic() - _STARTED_AT),
        'config': safe_config(),
    }
    if recorder is not None:
        report['stats'] = recorder.stats()
    return report

# --- Typer App Definition ---
app = typer.Typer(
    name="atsgate",
    help="atsgate: rate-limited, cached, resilient ATS keyword analysis of a resume against a job description.",
    add_completion=False,
)

ReadableFile = dict(exists=True, file_okay=True, dir_okay=False, readable=True, resolve_path=True)

@app.command()
def analyze(
    resume: Annotated[Path, typer.Argument(help="Path to the resume text file.", **ReadableFile)],
    job: Annotated[Path, typer.Argument(help="Path to the job description text file.", **ReadableFile)],
    identifier: Annotated[str, typer.Option("--identifier", "-u", help="Requester identity used for rate limiting.")] = "local",
):
    """Analyze how well a resume covers the keywords of a job description."""
    ui = ConsoleDisplay()
    try:
        dependencies = create_dependencies()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        ui.display_error(f"Server misconfiguration: {e}")
        raise typer.Exit(code=2)
    ui = dependencies['ui']

    try:
        resume_text = resume.read_text(encoding='utf-8')
        job_text = job.read_text(encoding='utf-8')
    except UnicodeDecodeError as e:
        logger.warning(f"Input is not valid UTF-8: {e}")
        ui.display_error("Input files must be UTF-8 encoded text.")
        raise typer.Exit(code=1)
    ui.display_info(f"Analyzing {resume.name} against {job.name}...")

    try:
        outcome = asyncio.run(run_analysis(dependencies, identifier, resume_text, job_text))
    except UpstreamHardFailure as e:
        logger.debug(f"Analysis aborted by upstream failure: {e}")
        ui.display_error(GENERIC_FAILURE_MESSAGE)
        raise typer.Exit(code=1)

    if outcome.status == STATUS_RATE_LIMITED:
        reset = datetime.fromtimestamp(outcome.decision.reset_at).strftime("%H:%M:%S")
        ui.display_error(f"Too many requests. Please try again after {reset}.")
        raise typer.Exit(code=1)
    if outcome.status == STATUS_NO_KEYWORDS:
        ui.display_error(
            "Could not extract keywords from job description. "
            "Please try with a different job description."
        )
        raise typer.Exit(code=1)
    ui.display_analysis(outcome)

@app.command()
def health():
    """Report configuration status (event stats are per-process and not kept between commands)."""
    load_configuration()
    report = build_health_report()
    ConsoleDisplay().display_health(report)
    if report['status'] != 'ok':
        raise typer.Exit(code=1)

# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    logging.basicConfig(level=logging.INFO, format=DEFAULT_LOG_FORMAT)
    app()

if __name__ == "__main__":
    cli_entry_point()
