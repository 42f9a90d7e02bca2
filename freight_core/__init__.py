"""
Freight ERP Core

Pure business rules for a freight-forwarding ERP: document lifecycles,
monetary reconciliation, temporal classification, dashboard rollups,
input validation and document numbering.
"""

__version__ = "1.0.0"
