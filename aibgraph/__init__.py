"""Infrastructure asset graph: SQLite storage, blast-radius analysis, exports and graph-database mirroring."""

__version__ = "0.1.0"