"""Frame sources and analysis pipelines."""
