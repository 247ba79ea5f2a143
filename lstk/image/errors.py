class LevelSetError(Exception):
    """Base class for errors raised while configuring or running a level-set
    evolution."""

class ConfigurationError(LevelSetError, ValueError):
    """Inputs, weights, or fields are missing or have incompatible shapes.
    Always raised before the level set is modified."""

class NumericalInstabilityError(LevelSetError, ArithmeticError):
    """An iteration produced a non-finite update or an unusable time step.
    The level set is left as it was after the last completed iteration."""
