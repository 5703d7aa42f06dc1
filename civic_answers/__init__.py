"""civic-answers: retrieval-and-answering pipeline for municipal service questions."""

__version__ = "0.1.0"
