"""Configuration, logging, errors and metrics shared by every component."""
