"""
Hierarchical phase status

A tree of status lines an operator watches while a phase runs. Each node has
a message, a few key/value props and child nodes; the fan-out executor gives
each instance its own child.
"""

from typing import Any, Callable, Dict, List, Optional


class StatusReport:
    """One node of the status tree."""

    def __init__(self, on_change: Optional[Callable[[], None]] = None):
        self.message: Optional[str] = None
        self.props: Dict[str, Any] = {}
        self.children: List["StatusReport"] = []
        self._on_change = on_change

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    def update(self, fmt: str, *args) -> None:
        self.message = fmt % args if args else fmt
        self._changed()

    def prop(self, key: str, value: Any) -> None:
        self.props[key] = value
        self._changed()

    def child(self) -> "StatusReport":
        node = StatusReport(on_change=self._on_change)
        self.children.append(node)
        return node

    def trunc(self) -> None:
        """Drop all children."""
        self.children = []
        self._changed()

    def clear(self) -> None:
        """Drop message and props, keep children."""
        self.message = None
        self.props = {}
        self._changed()

    def snapshot(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "props": dict(self.props),
            "children": [c.snapshot() for c in self.children],
        }

    def lines(self, depth: int = 0) -> List[str]:
        """Render the tree as indented text lines."""
        out = []
        if self.message is not None:
            out.append("  " * depth + self.message)
        for key, value in self.props.items():
            out.append("  " * depth + f"  {key}: {value}")
        for c in self.children:
            out.extend(c.lines(depth + 1))
        return out
