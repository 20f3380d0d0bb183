"""rx-loader: pharmacy prescription and claim import pipeline.

Reads prescription and claim exports (CSV or Excel), resolves the reference
entities they mention, and bulk-loads the resulting facts into DuckDB or
PostgreSQL.
"""

__version__ = "1.0.0"
