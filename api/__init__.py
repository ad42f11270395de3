"""OpenOrbit observer API, configuration, logging and persistence."""
