"""
dbxfer tools.

- dialects: per-engine SQL, catalog queries and driver connections
- transfer: source reader, schema resolver, destination writer, orchestrator
- catalog: connection checks, listings, row counts and previews
"""
