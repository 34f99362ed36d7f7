"""Config, models, exceptions and component wiring."""
