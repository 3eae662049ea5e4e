"""Custom logging levels for the application.

Adds a TRACE level below DEBUG, used for raw ACME protocol chatter.
"""

import logging

# Define TRACE level (below DEBUG)
TRACE = 5


def setup_trace_logging():
    """Set up the TRACE logging level in Python's logging system."""
    logging.addLevelName(TRACE, "TRACE")

    def trace(self, message, *args, **kwargs):
        if self.isEnabledFor(TRACE):
            self._log(TRACE, message, args, **kwargs)

    logging.Logger.trace = trace

    def adapter_trace(self, message, *args, **kwargs):
        self.log(TRACE, message, *args, **kwargs)

    logging.LoggerAdapter.trace = adapter_trace

    logging.TRACE = TRACE

    return TRACE


def resolve_level(name: str) -> int:
    """Translate a level name (including TRACE) to its numeric value."""
    name = (name or "INFO").upper()
    if name == "TRACE":
        return TRACE
    return getattr(logging, name, logging.INFO)


# Initialize TRACE level when module is imported
TRACE_LEVEL = setup_trace_logging()
