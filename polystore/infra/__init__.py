"""Infrastructure: storage, logging, metrics and tracing."""
