"""fmrmatch HTTP service (FastAPI)."""
