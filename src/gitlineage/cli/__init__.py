"""gitlineage command line interface."""
