"""Incremental, watermark-driven synchronization of table pairs across a database link."""

__version__ = "0.1.0"
