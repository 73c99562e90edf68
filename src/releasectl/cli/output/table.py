"""Table output for CLI commands.

Wraps Rich's Table so release listings wrap long values (chart names,
descriptions) instead of truncating them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from rich.table import Table as RichTable

if TYPE_CHECKING:
    from rich.console import ConsoleRenderable, RichCast


class Table(RichTable):
    """Rich Table whose columns fold overflowing text by default.

    Usage:
        table = Table(title="Releases")
        table.add_column("Name")  # wraps long text
        table.add_column("Revision", no_wrap=True)
    """

    def add_column(
        self,
        header: ConsoleRenderable | RichCast | str = "",
        footer: ConsoleRenderable | RichCast | str = "",
        **kwargs: Any,
    ) -> None:
        """Add a column, defaulting ``overflow`` to ``"fold"``."""
        kwargs.setdefault("overflow", "fold")
        super().add_column(header, footer, **kwargs)
