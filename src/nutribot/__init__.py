"""Command-line nutrition chatbot with retrieval-augmented answers."""

from .config import AppConfig, load_config

__all__ = ["AppConfig", "load_config"]
