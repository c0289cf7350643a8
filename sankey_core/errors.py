"""Exceptions raised by the flow editor core."""


class SankeyError(Exception):
    """Base class for flow editor errors."""
    pass


class UnknownElementError(SankeyError, KeyError):
    """Raised when styling or selecting a node/link not derivable from rows."""

    def __str__(self) -> str:
        # KeyError wraps its message in quotes
        return str(self.args[0]) if self.args else ""


class RowIndexError(SankeyError, IndexError):
    """Raised when a row edit targets an index outside the row list."""
    pass


class LayoutError(SankeyError):
    """Raised when the layout function cannot place the graph."""
    pass


class CircularFlowError(LayoutError):
    """Raised when the flow graph contains a cycle."""
    pass


class RasterExportError(SankeyError):
    """Raised when a scene cannot be rasterized to PNG."""
    pass
