"""Gateway services: admission, screening, storage, streaming, summarization."""
