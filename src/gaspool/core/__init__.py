"""Core definitions: chain table, configuration, errors, logging and types."""
