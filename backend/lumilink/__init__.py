"""LumiLink badge engine: catalog, metric aggregation, award ledger and evaluation passes."""

__version__ = "0.1.0"
