"""Issue-tracker export loader."""
