"""Daemon module - Sync engine, project workspace, and CLI."""
