"""Command-line applications built on rsfusion."""
