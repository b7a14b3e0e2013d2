"""
Client-side service engine for LTI resource links.

Resolves which grading, roster and settings services a platform offers for a
resource link, calls them with the right signing scheme and reconciles the
returned roster with persisted user results.
"""

__version__ = "1.0.0"
