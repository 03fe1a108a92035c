class InvalidInputError(ValueError):
    """Raised when a learner is asked to build from an empty training set."""
