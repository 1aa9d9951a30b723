"""Selectors for the workflow kernel (read side)."""

from workflow_kernel.selectors.inbox_selector import InboxSelector

__all__ = ["InboxSelector"]
