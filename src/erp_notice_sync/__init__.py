"""Sync ERP portal notices to a downstream webhook."""

__version__ = "0.1.0"
