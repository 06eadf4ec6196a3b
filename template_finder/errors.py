"""Terminal failures raised while serving a find request."""

from __future__ import annotations

from typing import Optional


class TemplateFinderError(RuntimeError):
    pass


class EmptyImageError(TemplateFinderError):
    pass


class TemplateTooLargeError(TemplateFinderError):
    pass


class InvalidRegionError(TemplateFinderError):
    pass


class NoMatchError(TemplateFinderError):
    """No candidate reached the required confidence.

    ``best_confidence`` holds the highest rejected score, or None when the
    search produced no candidate at all.
    """

    def __init__(self, message: str, best_confidence: Optional[float] = None):
        super().__init__(message)
        self.best_confidence = best_confidence
