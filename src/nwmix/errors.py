"""Exceptions raised by the Normal-Wishart cluster engine."""

__all__ = [
    'NormalWishartError',
    'InvalidInput',
    'NumericalFailure',
    'MissingResource',
]

class NormalWishartError(Exception):
    """Base class for all errors raised by nwmix."""

class InvalidInput(NormalWishartError, ValueError):
    """Inputs are empty, mis-shaped, or out of their allowed range."""

class NumericalFailure(NormalWishartError, ArithmeticError):
    """A matrix was singular or not positive-definite, or a result was not finite.

    Attributes
        clusters (tuple of int): Indices of the offending clusters, if known.
    """

    def __init__(self, message, clusters=()):
        super().__init__(message)
        self.clusters = tuple(int(k) for k in clusters)

class MissingResource(NormalWishartError, FileNotFoundError):
    """A file of initial cluster centers does not exist or cannot be read."""
