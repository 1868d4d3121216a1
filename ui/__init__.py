"""Admin web surface for the clinic records layer."""
