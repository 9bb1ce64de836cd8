"""Submitter-facing status views."""
