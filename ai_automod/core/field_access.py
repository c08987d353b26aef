"""
Allow-listed field access for analysis findings.

Decision layers read nested finding fields by dotted path (for example
``scammerRisk.level``). Only explicitly permitted paths resolve, traversal
depth is capped, and only plain mapping keys are followed. Attributes and
dunder names are never reachable.
"""

from typing import Any, Iterable, Mapping, Optional

DEFAULT_MAX_DEPTH = 5

DEFAULT_ALLOWED_PATHS = frozenset({
    "datingIntent.detected",
    "datingIntent.confidence",
    "scammerRisk.level",
    "scammerRisk.confidence",
    "scammerRisk.patterns",
    "spamIndicators.detected",
    "spamIndicators.confidence",
    "spamIndicators.patterns",
    "overallRisk",
    "recommendedAction",
})


class FieldAccessor:
    """Resolve dotted paths against findings using an explicit allow-list."""

    def __init__(
        self,
        allowed_paths: Iterable[str] = DEFAULT_ALLOWED_PATHS,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ):
        if max_depth < 1:
            raise ValueError("max_depth must be >= 1")
        self.max_depth = max_depth
        self.allowed_paths = frozenset(allowed_paths)
        for path in self.allowed_paths:
            self._check_shape(path)

    def _check_shape(self, path: str) -> list:
        parts = path.split(".")
        if len(parts) > self.max_depth:
            raise ValueError(f"Field path '{path}' exceeds max depth {self.max_depth}")
        for part in parts:
            if not part or part.startswith("_"):
                raise ValueError(f"Invalid field path segment in '{path}'")
        return parts

    def get(self, findings: Mapping[str, Any], path: str) -> Optional[Any]:
        """Return the value at ``path`` or None when any segment is missing.

        Raises:
            ValueError: If the path is not allow-listed or malformed
        """
        if path not in self.allowed_paths:
            raise ValueError(f"Field path '{path}' is not allowed")
        current: Any = findings
        for part in self._check_shape(path):
            if not isinstance(current, Mapping) or part not in current:
                return None
            current = current[part]
        return current
