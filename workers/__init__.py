"""Worker entry points (Cloud Run Jobs / scheduled triggers)."""
