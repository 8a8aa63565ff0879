"""User interaction abstraction for CLI, testing, and embedding hosts.

Hypervisor workflows occasionally need a human decision: repairing the
kernel driver requires privileges, and the extension pack is distributed
under a separate license. These calls block until the user answers; no
timeout governs the wait.

Example:
    >>> handler = CLIInteractionHandler()
    >>> if handler.confirm("Driver problem", "Try to fix it now?"):
    ...     handler.alert("Driver problem", "Repair started")

    Testing example:
    >>> test_handler = MockInteractionHandler(confirm_responses=[True])
    >>> test_handler.confirm("Title", "Proceed?")
    True
"""

from typing import Protocol, runtime_checkable

import click


@runtime_checkable
class InteractionHandler(Protocol):
    """Protocol for user interaction.

    This protocol defines the interface the session engine uses to ask the
    user for decisions, allowing CLI, testing, and host implementations.
    """

    def confirm(self, title: str, message: str) -> bool:
        """Ask a yes/no question.

        Args:
            title: Short title of the decision
            message: Question to display

        Returns:
            True if accepted, False if declined
        """
        ...

    def alert(self, title: str, message: str) -> None:
        """Display a message the user must see.

        Args:
            title: Short title
            message: Message body
        """
        ...

    def confirm_license(self, title: str, text: str) -> bool:
        """Display license text and ask for acceptance.

        Args:
            title: License name
            text: Full license text

        Returns:
            True if the license was accepted
        """
        ...


class CLIInteractionHandler:
    """Click-based CLI interaction handler.

    Example:
        >>> handler = CLIInteractionHandler()
        >>> handler.confirm_license("Extension Pack License", "...license text...")
    """

    def confirm(self, title: str, message: str) -> bool:
        """Prompt for yes/no confirmation with colored output.

        Args:
            title: Short title, shown in bold
            message: Confirmation question

        Returns:
            True if confirmed, False otherwise
        """
        click.echo()
        click.secho(title, fg="yellow", bold=True)
        try:
            return click.confirm(click.style(message, fg="yellow"), default=False)
        except click.Abort:
            click.echo()
            return False

    def alert(self, title: str, message: str) -> None:
        """Display an alert on stderr.

        Args:
            title: Short title, shown in bold
            message: Message body
        """
        click.secho(title, fg="red", bold=True, err=True)
        click.secho(message, err=True)

    def confirm_license(self, title: str, text: str) -> bool:
        """Page the license text and ask for acceptance.

        Args:
            title: License name
            text: Full license text

        Returns:
            True if accepted, False otherwise
        """
        click.echo()
        click.secho(title, fg="green", bold=True)
        click.echo_via_pager(text)
        try:
            return click.confirm("Do you accept the license terms?", default=False)
        except click.Abort:
            click.echo()
            return False


class MockInteractionHandler:
    """Mock interaction handler for testing with pre-programmed responses.

    Provides deterministic responses for testing without user interaction.
    Tracks all interactions for verification in tests.

    Example:
        >>> handler = MockInteractionHandler(
        ...     confirm_responses=[True],
        ...     license_responses=[False]
        ... )
        >>> handler.confirm("Title", "Continue?")
        True
        >>> handler.confirm_license("License", "text")
        False
        >>> len(handler.interactions)
        2
    """

    def __init__(
        self,
        confirm_responses: list[bool] | None = None,
        license_responses: list[bool] | None = None,
    ):
        """Initialize test handler with pre-programmed responses.

        Args:
            confirm_responses: Boolean confirmation responses in sequence
            license_responses: Boolean license responses in sequence
        """
        self.confirm_responses = confirm_responses or []
        self.license_responses = license_responses or []
        self.interactions: list[dict] = []
        self._confirm_index = 0
        self._license_index = 0

    def confirm(self, title: str, message: str) -> bool:
        """Return next pre-programmed confirmation response.

        Raises:
            IndexError: If no more confirm responses available
        """
        if self._confirm_index >= len(self.confirm_responses):
            raise IndexError(
                f"No more confirm responses available. "
                f"Provided {len(self.confirm_responses)}, "
                f"needed {self._confirm_index + 1}"
            )

        response = self.confirm_responses[self._confirm_index]
        self._confirm_index += 1
        self.interactions.append(
            {"type": "confirm", "title": title, "message": message, "response": response}
        )
        return response

    def alert(self, title: str, message: str) -> None:
        """Record alert without displaying."""
        self.interactions.append({"type": "alert", "title": title, "message": message})

    def confirm_license(self, title: str, text: str) -> bool:
        """Return next pre-programmed license response.

        Raises:
            IndexError: If no more license responses available
        """
        if self._license_index >= len(self.license_responses):
            raise IndexError(
                f"No more license responses available. "
                f"Provided {len(self.license_responses)}, "
                f"needed {self._license_index + 1}"
            )

        response = self.license_responses[self._license_index]
        self._license_index += 1
        self.interactions.append(
            {"type": "license", "title": title, "message": text, "response": response}
        )
        return response

    def reset(self) -> None:
        """Reset handler state for reuse in tests."""
        self.interactions.clear()
        self._confirm_index = 0
        self._license_index = 0

    def get_interactions_by_type(self, interaction_type: str) -> list[dict]:
        """Get all interactions of a specific type ("confirm", "alert", "license")."""
        return [
            interaction
            for interaction in self.interactions
            if interaction["type"] == interaction_type
        ]


__all__ = ["CLIInteractionHandler", "InteractionHandler", "MockInteractionHandler"]
