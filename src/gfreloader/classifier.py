"""Map changed provisioning files onto the Grafana reload categories they affect."""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import PurePath


@dataclass(frozen=True, slots=True)
class ReloadCategory:
    """A class of provisioned configuration with its own reload endpoint."""

    name: str
    directory: str
    extension: str = "yml"
    endpoint: str | None = None

    @property
    def pattern(self) -> str:
        """Return the glob describing files that belong to this category."""
        return f"**/{self.directory}/*.{self.extension}"

    @property
    def reload_path(self) -> str:
        """Return the API path (relative to ``/api/``) that reloads this category."""
        return f"admin/provisioning/{self.endpoint or self.name}/reload"

    def matches(self, path: str | PurePath) -> bool:
        """Return ``True`` when *path* is a direct child file of the category directory."""
        pure = PurePath(path)
        # Hidden files such as editor lock links never belong to a category.
        if pure.name.startswith("."):
            return False
        # PurePath.match anchors on the right, which gives the "**/" prefix for free.
        return pure.match(f"{self.directory}/*.{self.extension}")


CATEGORY_CATALOGUE: dict[str, ReloadCategory] = {
    category.name: category
    for category in (
        ReloadCategory("dashboards", "dashboards"),
        ReloadCategory("datasources", "datasources"),
        ReloadCategory("plugins", "plugins"),
        ReloadCategory("notifiers", "notifiers", endpoint="notifications"),
        ReloadCategory("alerting", "alerting"),
    )
}


def resolve_categories(names: Iterable[str]) -> tuple[ReloadCategory, ...]:
    """Return catalogue entries for *names*, preserving order."""
    try:
        return tuple(CATEGORY_CATALOGUE[name] for name in names)
    except KeyError as exc:
        raise ValueError(f"Unknown reload category: {exc.args[0]}") from exc


class ChangeClassifier:
    """Evaluate every enabled category's pattern independently against a path."""

    def __init__(self, categories: Iterable[ReloadCategory]) -> None:
        self._categories = tuple(categories)

    @property
    def categories(self) -> tuple[ReloadCategory, ...]:
        return self._categories

    def classify(self, path: str | PurePath) -> frozenset[ReloadCategory]:
        """Return the categories *path* belongs to; empty means "ignore"."""
        return frozenset(category for category in self._categories if category.matches(path))


__all__ = [
    "CATEGORY_CATALOGUE",
    "ChangeClassifier",
    "ReloadCategory",
    "resolve_categories",
]
