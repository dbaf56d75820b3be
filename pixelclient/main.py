"""Main entry point for the pixelclient application.

Sets up the Typer CLI application, performs dependency injection (Composition Root),
defines CLI commands, and delegates execution to the CommandHandler.
"""

import asyncio
import logging
import sys
from typing import Annotated, Any, Coroutine, Dict, List, Optional

import typer

# --- Core Layer ---
from pixelclient.core.command_handler import CommandHandler
from pixelclient.core.services.action_service import BillableActionService, ScreenshotRequest
from pixelclient.core.services.history_service import HistoryService
from pixelclient.core.services.session_service import SessionService
from pixelclient.core.services.subscription_service import SubscriptionService
from pixelclient.core.services.usage_poller import UsagePoller

# --- Infrastructure Layer ---
from pixelclient.infrastructure.cache.caching_service import InFlightCache
from pixelclient.infrastructure.cli.display import ConsoleDisplay
from pixelclient.infrastructure.config.settings import load_client_settings
from pixelclient.infrastructure.http.api_client import ApiClient
from pixelclient.infrastructure.monitoring.logger_setup import setup_logging
from pixelclient.infrastructure.resilience.api_retry import ApiRetryService, RetryPolicy
from pixelclient.infrastructure.timing.clock import SystemClock

logger = logging.getLogger(__name__)

# --- Dependency Injection Container (Manual) ---

def create_dependencies() -> Dict[str, Any]:
    """Creates and wires up all dependencies for the application.

    This acts as the Composition Root.
    """
    dependencies: Dict[str, Any] = {}
    try:
        # 1. Configuration and logging
        settings = load_client_settings()
        setup_logging(log_level=settings.log_level, log_file=settings.log_file)
        logger.info("Configuration and logging initialized.")
        dependencies['settings'] = settings

        # 2. Infrastructure adapters
        dependencies['ui'] = ConsoleDisplay()
        dependencies['clock'] = SystemClock()
        dependencies['cache_service'] = InFlightCache(clock=dependencies['clock'])
        dependencies['session'] = SessionService(
            cache_service=dependencies['cache_service'],
            token=settings.auth_token,
            username=settings.username,
        )
        dependencies['api_retry_service'] = ApiRetryService(
            policy=RetryPolicy(
                max_attempts=settings.retry_attempts,
                initial_delay_ms=settings.retry_initial_delay_ms,
                max_delay_ms=settings.retry_max_delay_ms,
                backoff_multiplier=settings.retry_backoff_multiplier,
            ),
            clock=dependencies['clock'],
        )
        dependencies['api_client'] = ApiClient.from_settings(
            settings,
            retry_service=dependencies['api_retry_service'],
            session=dependencies['session'],
        )

        # 3. Core services
        dependencies['subscription_service'] = SubscriptionService(
            api_client=dependencies['api_client'],
            session=dependencies['session'],
            cache_service=dependencies['cache_service'],
            clock=dependencies['clock'],
        )
        dependencies['session'].add_logout_listener(dependencies['subscription_service'].reset)
        dependencies['usage_poller'] = UsagePoller(
            clock=dependencies['clock'],
            max_attempts=settings.poll_max_attempts,
            interval_ms=settings.poll_interval_ms,
        )
        dependencies['history_service'] = HistoryService(
            api_client=dependencies['api_client'],
            session=dependencies['session'],
            cache_service=dependencies['cache_service'],
            clock=dependencies['clock'],
            ttl_ms=settings.history_ttl_ms,
        )
        dependencies['action_service'] = BillableActionService(
            api_client=dependencies['api_client'],
            subscription=dependencies['subscription_service'],
            poller=dependencies['usage_poller'],
        )
        logger.info("Core services initialized.")

        # 4. Command handler
        dependencies['command_handler'] = CommandHandler(
            api_client=dependencies['api_client'],
            subscription_service=dependencies['subscription_service'],
            history_service=dependencies['history_service'],
            action_service=dependencies['action_service'],
            cache_service=dependencies['cache_service'],
            session=dependencies['session'],
            ui=dependencies['ui'],
        )
        logger.info("All dependencies initialized successfully.")
        return dependencies

    except Exception as e:
        logger.error(f"Fatal Error during application initialization: {e}", exc_info=True)
        if dependencies.get('ui'):
            dependencies['ui'].display_error(f"Application Initialization Failed: {e}")
        else:
            print(f"FATAL ERROR during initialization: {e}", file=sys.stderr)
        raise typer.Exit(code=1)


_dependencies: Optional[Dict[str, Any]] = None


def get_dependencies() -> Dict[str, Any]:
    """Returns the wired dependencies, creating them on first use."""
    global _dependencies
    if _dependencies is None:
        _dependencies = create_dependencies()
    return _dependencies


# --- Typer App Definition ---
app = typer.Typer(
    name="pixelclient",
    help="pixelclient: resilient command-line client for the PixelPerfect screenshot and download API.",
    add_completion=False,
)

# --- Helper for Running Async Commands ---
def run_async(coro: Coroutine[Any, Any, Any]) -> Any:
    """Runs a handler coroutine and closes the HTTP client on the same loop."""
    deps = get_dependencies()

    async def _runner() -> Any:
        try:
            return await coro
        finally:
            api_client = deps.get('api_client')
            if api_client is not None:
                await api_client.aclose()

    try:
        return asyncio.run(_runner())
    except Exception as e:
        logger.error(f"Error executing async command: {e}", exc_info=True)
        deps['ui'].display_error(f"Command execution failed: {e}")
        raise typer.Exit(code=1)


def _handler() -> CommandHandler:
    return get_dependencies()['command_handler']

# --- CLI Commands ---

@app.command()
def probe():
    """Check that the API is reachable (wakes a sleeping backend)."""
    reachable = run_async(_handler().handle_probe())
    if not reachable:
        raise typer.Exit(code=1)


@app.command()
def usage(
    no_sync: Annotated[bool, typer.Option("--no-sync", help="Read cached counters without asking the server to reconcile.")] = False,
):
    """Show plan usage counters and limits."""
    run_async(_handler().handle_usage(sync=not no_sync))


@app.command()
def history(
    format_tab: Annotated[str, typer.Option("--format", "-f", help="Filter: all, png, jpeg, webp, pdf.")] = "all",
    refresh: Annotated[bool, typer.Option("--refresh", "-r", help="Bypass the short-lived cache.")] = False,
):
    """List recent screenshots, newest first."""
    run_async(_handler().handle_history(format_tab, refresh))


@app.command()
def capture(
    url: Annotated[str, typer.Argument(help="Website URL (http:// or https://).")],
    width: Annotated[int, typer.Option(help="Viewport width in pixels.")] = 1920,
    height: Annotated[int, typer.Option(help="Viewport height in pixels.")] = 1080,
    image_format: Annotated[str, typer.Option("--format", "-f", help="png, jpeg, webp or pdf.")] = "png",
    full_page: Annotated[bool, typer.Option("--full-page", help="Capture the full scrollable page.")] = False,
    dark_mode: Annotated[bool, typer.Option("--dark-mode", help="Emulate a dark color scheme.")] = False,
    delay: Annotated[int, typer.Option(help="Seconds to wait before capturing.")] = 0,
    remove: Annotated[Optional[List[str]], typer.Option("--remove", help="CSS selector to remove (repeatable).")] = None,
):
    """Capture a screenshot of a website."""
    request = ScreenshotRequest(
        url=url,
        width=width,
        height=height,
        format=image_format,
        full_page=full_page,
        dark_mode=dark_mode,
        delay=delay,
        remove_elements=list(remove or []),
    )
    run_async(_handler().handle_capture(request))


@app.command()
def download(
    video: Annotated[str, typer.Argument(help="YouTube video id or URL.")],
    kind: Annotated[str, typer.Option("--type", "-t", help="transcript, audio or video.")] = "transcript",
    timestamps: Annotated[bool, typer.Option("--timestamps", help="Transcript with timestamps (unclean).")] = False,
    transcript_format: Annotated[str, typer.Option("--transcript-format", help="Format for timestamped transcripts.")] = "srt",
    quality: Annotated[str, typer.Option(help="Audio/video quality.")] = "high",
):
    """Download a transcript, audio or video for a YouTube video."""
    if kind == "transcript":
        options: Dict[str, Any] = {"clean": not timestamps, "transcript_format": transcript_format}
    else:
        options = {"quality": quality}
    run_async(_handler().handle_download(video, kind, **options))


@app.command()
def checkout(
    plan: Annotated[str, typer.Argument(help="Plan to upgrade to, e.g. 'pro'.")],
):
    """Start a checkout session and print its URL."""
    run_async(_handler().handle_checkout(plan))


@app.command(name="clear-cache")
def clear_cache_command():
    """Clears the in-memory request cache."""
    _handler().handle_clear_cache()

# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    app()

if __name__ == "__main__":
    cli_entry_point()
