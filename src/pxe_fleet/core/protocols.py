"""
Structural protocols shared across pxe-fleet.

Manifesto:
    Domain code depends on the *shape* of a database connection, not on
    ``sqlite3`` itself. Any object with ``execute``/``commit``/``rollback``
    satisfies :class:`Connection`, which keeps the repository testable with
    an in-memory database.

Tags:
    protocol, connection, database, pxe-fleet
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from pxe_fleet.core.models import Deployment


@runtime_checkable
class Connection(Protocol):
    """
    Minimal synchronous connection interface used by the deployment store.

    ``sqlite3.Connection`` satisfies it natively. ``execute`` must return a
    cursor-like object exposing ``fetchone``, ``fetchall`` and ``rowcount``;
    the store relies on ``rowcount`` to decide whether a conditional update
    (claim, cancel, compare-and-set) took effect.

    Examples:
        >>> cursor = conn.execute(
        ...     "UPDATE deployments SET status = ? WHERE id = ? AND status = ?",
        ...     ("pending", "d-1", "scheduled"),
        ... )
        >>> conn.commit()
        >>> cursor.rowcount
        1
    """

    def execute(self, sql: str, params: tuple = ()) -> Any:
        """Execute SQL statement with optional parameters."""
        ...

    def commit(self) -> None:
        """Commit the current transaction."""
        ...

    def rollback(self) -> None:
        """Rollback the current transaction."""
        ...


@runtime_checkable
class ExecutionLauncher(Protocol):
    """
    Receives the "begin execution for deployment X" signal.

    The imaging pipeline itself lives outside pxe-fleet; it reports back
    through the scheduler callbacks (``start_execution``, ``report_progress``,
    ``finish_imaging``, ``complete``, ``fail``). Raising from
    ``begin_execution`` leaves the deployment ``pending`` with an error
    message so an operator can cancel or retry it.
    """

    def begin_execution(self, deployment: Deployment) -> None:
        """Signal that ``deployment`` was claimed and should start."""
        ...
