"""Command-line entry points (run with ``python -m sprite_control.scripts.<name>``)."""
