"""Front-end connectors."""
