"""Process-level concerns shared by the sync engine: logging and tracing."""
