"""thoughtsort: voice-note categorization with an offline-first sync client."""

__version__ = "0.4.0"
