"""Durable AI job queue for OSINT investigations.

Jobs live in SQLite next to the investigations they analyse. A worker claims
the oldest eligible queued job, builds a prompt from the investigation's
findings, asks the configured Ollama service for a completion, splits the
markdown answer into named sections, and records either the result or a
classified, retryability-tagged error.

Several workers (or several processes) may share one database file: every
state change is a conditional update, so a job is never claimed twice and a
late result for a cancelled job is dropped instead of overwriting it.
"""
