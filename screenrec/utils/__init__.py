"""Shared utilities: exceptions, logging and file handling."""
