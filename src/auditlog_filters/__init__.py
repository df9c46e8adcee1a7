"""
auditlog-filters: lifecycle controller for server-side audit log filters.

Reconciles named audit-filter definitions and user-to-filter assignments
against a MySQL/Percona server that only exposes them through side-effecting
``audit_log_filter_*`` functions. Importing the package has no side effects
(no config loading, no logging setup, no connections).
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
