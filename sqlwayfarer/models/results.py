"""
Result values returned across the UI boundary
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from sqlwayfarer.core.exceptions import WayfarerError


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a lifecycle operation, rendered inline by the UI"""
    success: bool
    message: str
    error: Optional[WayfarerError] = None

    @classmethod
    def ok(cls, message: str) -> 'OperationResult':
        return cls(success=True, message=message)

    @classmethod
    def fail(cls, message: str, error: Optional[WayfarerError] = None) -> 'OperationResult':
        return cls(success=False, message=message, error=error)

    def to_dict(self) -> dict:
        return {"success": self.success, "message": self.message}


@dataclass(frozen=True)
class QueryResult:
    """Rows returned by a query on the active connection"""
    columns: tuple[str, ...] = ()
    rows: list[dict[str, Any]] = field(default_factory=list)
    rowcount: int = -1

    @property
    def returns_rows(self) -> bool:
        return bool(self.columns)

    def scalar(self) -> Any:
        """First column of the first row, or None"""
        if self.rows and self.columns:
            return self.rows[0][self.columns[0]]
        return None
