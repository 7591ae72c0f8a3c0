"""Prompt orchestrator: fans one prompt out to many engines.

Engines fail and stall independently. The runner bounds how many calls are in
flight at once with a per-runner concurrency gate, retries failed attempts
with a capped linear backoff, bounds every attempt with a timeout that cancels
the underlying HTTP call, and aggregates whatever came back into one
`RunResult`. Derived metrics (cost, quality, task complexity) land in a
SQLite store that the CLI reports on.
"""
