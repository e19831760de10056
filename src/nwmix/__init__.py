"""Variational Bayesian cluster-parameter engine for Gaussian mixtures."""

from nwmix.errors import (
    NormalWishartError,
    InvalidInput,
    NumericalFailure,
    MissingResource,
)

import nwmix.normal_wishart as normal_wishart
