"""Structured event logging package."""

from budgetblocks.audit.logger import LOGGER_NAME, StoreEventLogger

__all__ = ["LOGGER_NAME", "StoreEventLogger"]
