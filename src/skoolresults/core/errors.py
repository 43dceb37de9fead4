class ResultsError(Exception):
    pass


class PreconditionError(ResultsError):
    """Something the computation needs is missing (grading system, destination class, ...)."""


class PersistenceError(ResultsError):
    """A save or transition batch failed as a whole."""
