"""Core services: engine, configuration, logging and input normalisation."""
