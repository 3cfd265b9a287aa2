"""count-kernel command line interface."""
