# =============================================================================
# src/cli/__init__.py - CLI Module Overview
# =============================================================================
#
# Command-line tools for operating the ingestion runtime.
#
#   INGESTION (ingest.py)
#      Adds url / pdf jobs to the durable queue, runs the dispatcher and
#      chunking loops, and exposes the operator actions (stats, retry,
#      cancel, cleanup, reset-embeddings).
#
# Architecture Notes:
#   - argparse for argument parsing (not Click/Typer).
#   - Heavy imports (LLM, embedding and vector-store clients) are deferred
#     until the `run` command needs them.
# =============================================================================

"""CLI tools for the ingestion runtime.

- ``python -m src.cli.ingest`` - queue jobs, run workers, operator actions.
"""
