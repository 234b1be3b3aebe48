"""
Data Ingestion Module

Validates and normalizes rows handed over by the data collaborators:
- price snapshots per asset
- portfolio valuation snapshots
- wallet transaction history
- protocol positions
"""

__version__ = "0.1.0"
