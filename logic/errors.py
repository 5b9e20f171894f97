"""Exceptions raised by the recipe extraction pipeline.

Rendering and extraction failures are converted into structured results by the
orchestrator; only validation errors from the text path reach the caller as
exceptions.
"""


class RecipeParseError(Exception):
    """Base exception for recipe parsing errors."""


class RecipeValidationError(RecipeParseError):
    """Raised for bad input: malformed URL, empty or oversized text."""


class IncompleteRecipeError(RecipeValidationError):
    """Raised when extraction produced a recipe without name or ingredients."""


class RenderError(RecipeParseError):
    """Raised when the browser could not render the page."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class NavigationTimeoutError(RenderError):
    def __init__(self, message: str):
        super().__init__(message, retryable=False)


class TextExtractionError(RecipeParseError):
    """Raised when the language model call or its reply failed."""
