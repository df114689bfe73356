"""Top-level package for the event relay (analytics ingest → warehouses/lakes)."""

__all__ = [
    "APP_ENV",
    "__version__",
]

from dotenv import load_dotenv
import os
load_dotenv()

__version__ = "1.0.0"

APP_ENV = os.getenv("APP_ENV", "production").lower()
