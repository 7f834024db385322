"""gitlineage - merged feature branch reconstruction and safe message rewriting."""

__version__ = "0.1.0"
