"""curlspec - Structured API specifications from curl-based documentation.

This package turns free-form markdown containing curl invocations into
validated API specifications. A language-model strategy handles semantic
understanding, while a deterministic tokenizer-based strategy keeps the
pipeline usable when the model service is degraded or unavailable.
"""

__version__ = "0.1.0"
