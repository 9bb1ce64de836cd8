"""Test fixture package for the analysis platform.

Contains fixtures for:
- Building package archives (valid and hostile ZIP files)
- Temporary stores, ledgers and fully wired platforms
- HTTP clients against the FastAPI application
"""
