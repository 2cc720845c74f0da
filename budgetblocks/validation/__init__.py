"""Input validation package."""

from budgetblocks.validation.validator import StoreValidator, ValidationFailedError

__all__ = ["StoreValidator", "ValidationFailedError"]
