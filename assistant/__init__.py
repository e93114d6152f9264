"""Assistant core: routes free text to permission-checked tool invocations."""

__version__ = "0.3.0"
