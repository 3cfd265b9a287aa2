"""Pure domain layer: values, validation and rules.  Zero I/O."""
