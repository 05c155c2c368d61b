"""splitpack: recursive ES-module builder with code splitting and watch mode."""

__version__ = "0.3.0"
