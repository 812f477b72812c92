"""elicznik package.

A batch job that logs in to the Tauron eLicznik portal, downloads hourly
grid import/export readings, and upserts them into PostgreSQL.
"""

__version__ = "0.1.0"
