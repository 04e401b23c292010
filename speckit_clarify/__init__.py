"""Speck-It Clarify - spec clarification loop package."""

# No imports at package level to avoid circular import issues
# Import modules directly where needed

__all__ = [
    "AmbiguityScanner",
    "ClarificationEditor",
    "ClarificationSession",
    "ClarificationWorkflow",
    "SpecDocument",
    "SpecLocator",
]
