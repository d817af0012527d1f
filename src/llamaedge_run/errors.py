"""Errors raised while preparing or launching a model."""


class SetupError(RuntimeError):
    """A step of the setup failed and the run cannot continue."""
