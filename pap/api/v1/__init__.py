"""Version 1 of the submission API."""
