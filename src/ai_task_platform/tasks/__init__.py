"""Task engine: definitions, persistence, processors and scheduling."""
