"""Cross-cutting infrastructure: structured logging and metrics."""
