"""Subcommand implementations registered by ``tierforge.cli.app``."""
