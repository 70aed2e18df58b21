"""Widget library for the Textual UI."""

from __future__ import annotations

from .connection_form import ConnectionFormResult, ConnectionFormScreen
from .query_editor import QueryEditor
from .results_table import ResultsTable
from .row_detail import RowDetailScreen
from .status_bar import StatusBar
from .table_list import TableList

__all__ = [
    "ConnectionFormResult",
    "ConnectionFormScreen",
    "QueryEditor",
    "ResultsTable",
    "RowDetailScreen",
    "StatusBar",
    "TableList",
]
