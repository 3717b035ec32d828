from .dates import parse_portal_timestamp, parse_watermark

__all__ = ["parse_portal_timestamp", "parse_watermark"]
