"""Context Curator: rank, classify and explain the files worth handing to an AI assistant."""

__version__ = "0.1.0"
