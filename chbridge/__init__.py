"""Bridge for moving tabular data between ClickHouse and flat CSV/TXT files."""

__version__ = '0.2.0'
