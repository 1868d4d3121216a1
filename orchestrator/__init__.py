"""Command-line orchestration for the clinic records layer."""
