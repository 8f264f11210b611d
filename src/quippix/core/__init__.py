"""Core models, configuration, logging and error taxonomy."""
