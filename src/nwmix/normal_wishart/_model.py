from typing import NamedTuple

import jax.numpy as jnp
from jax import vmap
from jax.scipy.special import logsumexp
from jax.tree_util import tree_map

from nwmix.errors import InvalidInput, NumericalFailure
from nwmix.utils import (as_float_array, expected_log_det, invert,
                         multivariate_student_t)

__all__ = [
    'PriorParameters',
    'PosteriorParameters',
    'ClusterStatistics',
    'CenterInitialization',
    'num_clusters',
    'dim',
    'posterior_summary',
    'expected_log_precision',
    'log_likelihood_fixed_precision',
    'predictive_distribution',
    'predictive_distributions',
    'predictive_log_density',
    'map_covariances',
    'map_locations',
]

# Normal-Wishart parameters of the shared base (prior) distribution and of
# the K per-cluster posteriors. The posterior precision of cluster k is
# Λ_k ~ Wishart(scale_k, dof_k), and its location μ_k ~ N(loc_k, (precision_scale_k Λ_k)^-1).

class PriorParameters(NamedTuple):
    loc: jnp.ndarray                # [d]
    precision_scale: jnp.ndarray    # []
    dof: jnp.ndarray                # []
    scale: jnp.ndarray              # [d,d]
    scale_inv: jnp.ndarray          # [d,d]

class PosteriorParameters(NamedTuple):
    loc: jnp.ndarray                # [k,d]
    precision_scale: jnp.ndarray    # [k]
    dof: jnp.ndarray                # [k]
    scale: jnp.ndarray              # [k,d,d]

class ClusterStatistics(NamedTuple):
    weights: jnp.ndarray            # [k]
    weighted_sums: jnp.ndarray      # [k,d]
    means: jnp.ndarray              # [k,d]
    quadratic_forms: jnp.ndarray    # [k,d,d]

class CenterInitialization(NamedTuple):
    centers: jnp.ndarray            # [k,d]
    used_fallback: bool

# -----------------------------------------------------------------------------

def num_clusters(posterior):
    return posterior.loc.shape[0]

def dim(posterior):
    return posterior.loc.shape[-1]

def posterior_summary(posterior, k):
    """Return the parameters of cluster k as a dict of host values."""
    return {name: jnp.asarray(value[k]).tolist()
            for name, value in posterior._asdict().items()}

def _validate_data(data, dim=None):
    """Return data as a float array of shape [n,d], else raise InvalidInput."""
    data = as_float_array(data)
    if data.ndim != 2:
        raise InvalidInput(f"Expected data of shape (num_points, dim), got shape {data.shape}.")
    if data.shape[0] == 0:
        raise InvalidInput("Data must contain at least one point.")
    if dim is not None and data.shape[-1] != dim:
        raise InvalidInput(f"Expected data of dimension {dim}, got {data.shape[-1]}.")
    if not jnp.all(jnp.isfinite(data)):
        raise InvalidInput("Data must be finite.")
    return data

def _validate_prior(prior_params, dim):
    """Raise InvalidInput if the base distribution is not of dimension dim."""
    if prior_params.loc.shape[-1] != dim or prior_params.scale_inv.shape[-2:] != (dim, dim):
        raise InvalidInput(
            f"Base distribution has dimension {prior_params.loc.shape[-1]}, expected {dim}.")

def _validate_num_clusters(num_clusters):
    if int(num_clusters) != num_clusters or num_clusters <= 0:
        raise InvalidInput(f"Number of clusters must be a positive integer, got {num_clusters}.")
    return int(num_clusters)

def _nonfinite_clusters(arr):
    """Return indices along the leading axis with non-finite entries."""
    arr = jnp.asarray(arr)
    finite = jnp.all(jnp.isfinite(arr.reshape(arr.shape[0], -1)), axis=-1)
    return jnp.nonzero(~finite)[0].tolist()

def _raise_if_nonfinite(arr, what, matrix=True):
    bad = _nonfinite_clusters(arr)
    if bad:
        problem = "singular or non-positive-definite matrix" if matrix else "non-finite values"
        raise NumericalFailure(f"{what}: {problem} in clusters {bad}.", bad)

# -----------------------------------------------------------------------------

def expected_log_precision(posterior):
    """Return 0.5 E[log|Λ_k|] for each cluster, shape [k]."""
    out = 0.5 * expected_log_det(posterior.scale, posterior.dof)
    _raise_if_nonfinite(out[:, None], 'expected_log_precision', matrix=False)
    return out

def log_likelihood_fixed_precision(posterior, data):
    """Plug-in Gaussian log-density of each point under each cluster.

    Uses the current location and expected precision ν_k Ω_k, with the
    additional D/β_k term from the uncertainty in the location.

    Arguments
        posterior (PosteriorParameters)
        data[n,d]

    Returns
        loglik[n,k]
    """
    data = _validate_data(data, dim(posterior))
    num_dims = data.shape[-1]

    def _single_cluster(loc, precision_scale, dof, scale):
        diff = data - loc
        mahal = jnp.einsum('ni,ij,nj->n', diff, scale, diff)
        return (-0.5 * num_dims * jnp.log(2 * jnp.pi)
                - 0.5 * (num_dims / precision_scale + dof * mahal))

    return vmap(_single_cluster, out_axes=-1)(*posterior)

def _predictive_parameters(posterior):
    """Return location, scale matrix and degrees of freedom of the
    posterior-predictive Student-t of each cluster."""
    df = posterior.dof + 1 - dim(posterior)
    factor = df * posterior.precision_scale / (1 + posterior.precision_scale)
    sigma = invert(posterior.scale * factor[:, None, None])
    _raise_if_nonfinite(sigma, 'predictive_distributions')
    return posterior.loc, sigma, df

def predictive_distributions(posterior):
    """Return the posterior-predictive multivariate Student-t of each cluster.

    Returns
        list of K MultivariateStudentTLinearOperator distributions
    """
    locs, sigmas, dfs = _predictive_parameters(posterior)
    return [multivariate_student_t(loc, sigma, df)
            for loc, sigma, df in zip(locs, sigmas, dfs)]

def predictive_distribution(posterior, k):
    """Return the posterior-predictive multivariate Student-t of cluster k."""
    cluster_posterior = tree_map(lambda arr: arr[k:k+1], posterior)
    return predictive_distributions(cluster_posterior)[0]

def predictive_log_density(posterior, mixing_weights, data):
    """Log density of data under the mixture of predictive Student-t distributions.

    Arguments
        posterior (PosteriorParameters)
        mixing_weights[k]: Non-negative cluster weights, normalized here.
        data[n,d]

    Returns
        log_density[n]
    """
    data = _validate_data(data, dim(posterior))
    mixing_weights = as_float_array(mixing_weights)
    if mixing_weights.shape != (num_clusters(posterior),):
        raise InvalidInput(
            f"Expected {num_clusters(posterior)} mixing weights, got shape {mixing_weights.shape}.")
    if jnp.any(mixing_weights < 0) or not jnp.sum(mixing_weights) > 0:
        raise InvalidInput("Mixing weights must be non-negative with a positive sum.")

    locs, sigmas, dfs = _predictive_parameters(posterior)
    distr = multivariate_student_t(locs, sigmas, dfs)
    log_probs = distr.log_prob(data[:, None, :])
    log_weights = jnp.log(mixing_weights / jnp.sum(mixing_weights))
    return logsumexp(log_probs + log_weights, axis=-1)

def map_covariances(posterior):
    """Return the covariance at the mode of each cluster's Wishart, (ν_k Ω_k)^-1."""
    covs = invert(posterior.scale * posterior.dof[:, None, None])
    _raise_if_nonfinite(covs, 'map_covariances')
    return covs

def map_locations(posterior):
    """Return the MAP location of each cluster."""
    return posterior.loc
