"""
Aggregated results table.

Measurements are stored in cells keyed by (row label, column header). Rows
and columns keep the order in which they were first seen. A table is made
for each run and passed through the pipeline, so runs don't share state.
"""

import csv
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

LABEL_HEADER = "Label"


class DuplicateCellError(ValueError):
    """Raised when a (label, header) cell is written twice."""


@dataclass
class TableSnapshot:
    """Immutable-ish copy of a populated table for display or export."""
    headers: List[str]  # Starts with LABEL_HEADER
    rows: List[List[Any]]  # Absent cells are None

    @property
    def n_rows(self) -> int:
        return len(self.rows)

    def column(self, header: str) -> List[Any]:
        index = self.headers.index(header)
        return [row[index] for row in self.rows]


@dataclass
class CommandResult:
    """
    Outcome of one measurement command.

    Attributes:
        table: Snapshot of the results, None if cancelled or empty
        cancel_reason: Why the run was cancelled, None if it completed
        warnings: Non-fatal messages, e.g. bad calibration
        subspace_points: Box counting points per row label (fractal dimension)
        export_errors: {file path: error message} for failed mesh exports
    """
    table: Optional[TableSnapshot] = None
    cancel_reason: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    subspace_points: Dict[str, List[Tuple[float, float]]] = field(default_factory=dict)
    export_errors: Dict[str, str] = field(default_factory=dict)

    @property
    def cancelled(self) -> bool:
        return self.cancel_reason is not None

    @classmethod
    def cancel(cls, reason: str) -> "CommandResult":
        logger.info("Cancelled: %s", reason)
        return cls(cancel_reason=reason)


class ResultsTable:
    """
    Ordered (label x header) table of measurements.

    Writing the same cell twice raises DuplicateCellError; existing values
    are never overwritten. Empty labels or headers are ignored.
    """

    def __init__(self):
        self._labels: Dict[str, None] = {}
        self._headers: Dict[str, None] = {}
        self._cells: Dict[Tuple[str, str], Any] = {}

    def add(self, label: str, header: str, value: Any) -> None:
        """
        Add a measurement.

        Args:
            label: Row label, usually the image name plus subspace label
            header: Column header, e.g. "Fractal dimension"
            value: Measured value, float or string

        Raises:
            DuplicateCellError: If the cell already has a value
        """
        if not label or not header:
            logger.debug("Ignoring cell with empty label or header")
            return
        key = (label, header)
        if key in self._cells:
            raise DuplicateCellError(
                f"Cell ({label!r}, {header!r}) already has a value")
        self._labels.setdefault(label, None)
        self._headers.setdefault(header, None)
        self._cells[key] = value

    def get(self, label: str, header: str, default: Any = None) -> Any:
        return self._cells.get((label, header), default)

    def row(self, label: str) -> Dict[str, Any]:
        """Cells of one row as {header: value}, in column order."""
        return {h: self._cells[(label, h)] for h in self._headers
                if (label, h) in self._cells}

    @property
    def labels(self) -> List[str]:
        return list(self._labels)

    @property
    def headers(self) -> List[str]:
        return list(self._headers)

    def has_data(self) -> bool:
        return bool(self._cells)

    def __len__(self) -> int:
        return len(self._cells)

    def get_table(self) -> Optional[TableSnapshot]:
        """Snapshot of the table, or None if nothing has been added."""
        if not self.has_data():
            return None
        headers = self.headers
        rows = [[label] + [self._cells.get((label, h)) for h in headers]
                for label in self._labels]
        return TableSnapshot(headers=[LABEL_HEADER] + headers, rows=rows)

    def to_csv(self, output_path: str) -> bool:
        """
        Save the table to a CSV file.

        Returns:
            False if the table was empty and nothing was written
        """
        snapshot = self.get_table()
        if snapshot is None:
            return False

        with open(output_path, 'w', newline='', encoding='utf-8') as f:
            writer = csv.writer(f)
            writer.writerow(snapshot.headers)
            for row in snapshot.rows:
                writer.writerow(['' if v is None else v for v in row])

        logger.info("Results saved to %s", output_path)
        return True
