"""Interface for presenting results to the user.

Defines the contract for displaying information, errors and warnings,
allowing different UI implementations (e.g., console, GUI).
"""

import abc
from typing import Any, List

from pixelclient.domain.models.usage import UsageSnapshot


class UserInterface(abc.ABC):
    """Abstract Base Class for user interaction."""

    @abc.abstractmethod
    def display_output(self, output: str, **kwargs: Any) -> None:
        """Displays standard output to the user.

        Args:
            output: The text to display.
            **kwargs: Additional arguments for formatting (e.g., title).
        """
        pass

    @abc.abstractmethod
    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message to the user."""
        pass

    @abc.abstractmethod
    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        """Displays a warning message to the user."""
        pass

    @abc.abstractmethod
    def display_info(self, info_message: str, **kwargs: Any) -> None:
        """Displays an informational message to the user."""
        pass

    @abc.abstractmethod
    def display_usage(self, snapshot: UsageSnapshot, counters: List[str]) -> None:
        """Displays usage counters against their limits."""
        pass

    @abc.abstractmethod
    def display_history(self, items: List[Any]) -> None:
        """Displays a list of history items."""
        pass
