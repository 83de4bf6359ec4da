"""SQLite storage layer: tables, engine policy and migrations."""
