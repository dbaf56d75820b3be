import io

import pytest
from unittest.mock import MagicMock
from rich.console import Console
from rich.panel import Panel

from pixelclient.domain.models.common import KNOWN_COUNTERS
from pixelclient.domain.models.history import HistoryItem
from pixelclient.domain.models.usage import UsageSnapshot
from pixelclient.infrastructure.cli.display import ConsoleDisplay, _format_size


@pytest.fixture
def mock_console():
    """Fixture to create a mock rich Console object."""
    return MagicMock()


@pytest.fixture
def console_display(mock_console: MagicMock):
    """Fixture to create a ConsoleDisplay instance with a mocked console."""
    return ConsoleDisplay(console=mock_console)


@pytest.fixture
def recorded():
    """A real console writing into a buffer, for checking rendered text."""
    buffer = io.StringIO()
    display = ConsoleDisplay(console=Console(file=buffer, width=160, color_system=None))
    return display, buffer


def test_display_output_plain(console_display: ConsoleDisplay, mock_console: MagicMock):
    console_display.display_output("done")
    mock_console.print.assert_called_once_with("done")


def test_display_output_with_title(console_display: ConsoleDisplay, mock_console: MagicMock):
    console_display.display_output("https://checkout.example.com", title="Checkout URL")
    mock_console.print.assert_called_once()
    args, _ = mock_console.print.call_args
    assert isinstance(args[0], Panel)
    assert "Checkout URL" in args[0].title


@pytest.mark.parametrize("method, title", [
    ("display_error", "Error"),
    ("display_info", "Info"),
    ("display_warning", "Warning"),
])
def test_message_panels(console_display: ConsoleDisplay, mock_console: MagicMock, method, title):
    getattr(console_display, method)("Something happened")
    args, _ = mock_console.print.call_args
    assert isinstance(args[0], Panel)
    assert title in args[0].title
    assert args[0].renderable.plain == "Something happened"


def test_display_usage_renders_counters(recorded):
    display, buffer = recorded
    snapshot = UsageSnapshot.from_payload({
        "tier": "pro",
        "usage": {"screenshots": 12, "audio_downloads": 2},
        "limits": {"screenshots": 10, "audio_downloads": "unlimited"},
        "next_reset": "2023-12-01T00:00:00Z",
    })

    display.display_usage(snapshot, list(KNOWN_COUNTERS))

    output = buffer.getvalue()
    assert "Plan: pro" in output
    assert "2023-12-01" in output
    assert "10 / 10" in output
    assert "2 / ∞" in output
    assert "limit reached" in output
    assert "Screenshots" in output


def test_display_history_empty(console_display: ConsoleDisplay, mock_console: MagicMock):
    console_display.display_history([])
    args, _ = mock_console.print.call_args
    assert args[0].renderable.plain == "No screenshots yet."


def test_display_history_rows(recorded):
    display, buffer = recorded
    item = HistoryItem.from_raw({
        "id": 7,
        "format": "webp",
        "url": "https://example.com",
        "created_at": "2023-11-10T08:30:00Z",
        "file_size": 2048,
    }, index=0, now_ms=0)

    display.display_history([item])

    output = buffer.getvalue()
    assert "Screenshot History" in output
    assert "WEBP" in output
    assert "2023-11-10 08:30:00" in output
    assert "2.0 KB" in output
    assert "https://example.com" in output


@pytest.mark.parametrize("size, expected", [
    (0, "-"),
    (None, "-"),
    (512, "512 B"),
    (1536, "1.5 KB"),
    (3 * 1024 * 1024, "3.0 MB"),
])
def test_format_size(size, expected):
    assert _format_size(size) == expected
