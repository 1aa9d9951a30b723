"""
Workflow Kernel

A multi-entity approval workflow for hospitality operations:
- One request envelope for leave, document changes and transfers
- Per-entity-type transition rule tables with role-class authorization
- Append-only request history and version-conditioned writes
- Best-effort notification outbox
"""

__version__ = "0.1.0"
