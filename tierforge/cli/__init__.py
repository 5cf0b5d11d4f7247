"""Tierforge CLI — Typer-based command-line interface.

Provides the ``tierforge`` command with subcommands for matching branches,
resolving pipelines, submitting source events, driving approvals and
cancellations, inspecting executions, and running the demo.

All output uses Rich for formatted terminal display.
"""
