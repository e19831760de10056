import logging
from functools import partial

import jax.numpy as jnp
from jax import jit, vmap

from nwmix.errors import InvalidInput, NumericalFailure
from nwmix.utils import as_float_array, cluster_weights, invert, step
from nwmix.normal_wishart._model import *
from nwmix.normal_wishart._model import (_validate_data, _validate_prior,
                                         _raise_if_nonfinite)

__all__ = [
    'LOG_WEIGHT_THRESHOLD',
    'quadratic_forms',
    'compute_statistics',
    'scale_statistics',
    'update',
    'move_natural',
]

logger = logging.getLogger(__name__)

# Clusters with less total weight than this are omitted from debug logs
LOG_WEIGHT_THRESHOLD = 1e-9

# ==============================================================================
# SUFFICIENT STATISTICS
# ==============================================================================

def quadratic_forms(data, responsibilities, means):
    """Weighted scatter of the data about each cluster's mean.

    Arguments
        data[n,d]
        responsibilities[n,k]
        means[k,d]

    Returns
        quad_forms[k,d,d]
    """
    diffs = data[:, None, :] - means[None, :, :]
    return jnp.einsum('nk,nki,nkj->kij', responsibilities, diffs, diffs)

def _compute_statistics(data, responsibilities):
    weights = cluster_weights(responsibilities)
    weighted_sums = jnp.einsum('nk,ni->ki', responsibilities, data)

    # Empty clusters keep their (zero) weighted sum as their mean
    nonempty = weights > 0
    safe_weights = jnp.where(nonempty, weights, 1.)
    means = jnp.where(nonempty[:, None], weighted_sums / safe_weights[:, None], weighted_sums)

    return ClusterStatistics(
        weights=weights,
        weighted_sums=weighted_sums,
        means=means,
        quadratic_forms=quadratic_forms(data, responsibilities, means),
    )

_jitted_compute_statistics = jit(_compute_statistics)

def scale_statistics(stats, repeat):
    """Count the statistics `repeat` times. Means are unaffected."""
    return ClusterStatistics(
        weights=repeat * stats.weights,
        weighted_sums=repeat * stats.weighted_sums,
        means=stats.means,
        quadratic_forms=repeat * stats.quadratic_forms,
    )

def compute_statistics(data, responsibilities):
    """Compute the weighted Gaussian sufficient statistics of each cluster.

    Arguments
        data[n,d]
        responsibilities[n,k]

    Returns
        ClusterStatistics([k,...])
    """
    data, responsibilities = _validate_responsibilities(data, responsibilities)
    return _jitted_compute_statistics(data, responsibilities)

# ==============================================================================
# POSTERIOR UPDATES
# ==============================================================================

def _single_cluster_target(prior_params, weight, weighted_sum, mean, quad_form):
    """Conjugate Normal-Wishart posterior of one cluster given its statistics."""
    precision_scale = prior_params.precision_scale + weight
    loc = (prior_params.precision_scale * prior_params.loc + weighted_sum) / precision_scale
    dof = prior_params.dof + 1 + weight

    delta = mean - prior_params.loc
    shrinkage = prior_params.precision_scale * weight / precision_scale
    scale_inv = prior_params.scale_inv + quad_form + shrinkage * jnp.outer(delta, delta)

    return PosteriorParameters(
        loc=loc,
        precision_scale=precision_scale,
        dof=dof,
        scale=invert(scale_inv),
    )

def _natural_step(prior_params, posterior_params, data, responsibilities, pace, repeat):
    """Move posterior parameters toward their conjugate target.

    Returns
        updated_params (PosteriorParameters)
        scaled_stats (ClusterStatistics)
    """
    stats = _compute_statistics(data, responsibilities)
    scaled_stats = scale_statistics(stats, repeat)

    target_params = vmap(partial(_single_cluster_target, prior_params))(*scaled_stats)
    return step(posterior_params, target_params, pace), scaled_stats

_jitted_natural_step = jit(_natural_step)

def _validate_responsibilities(data, responsibilities, num_clusters=None, dim=None):
    data = _validate_data(data, dim)
    responsibilities = as_float_array(responsibilities)
    if responsibilities.ndim != 2 or responsibilities.shape[0] != data.shape[0]:
        raise InvalidInput(
            f"Expected responsibilities of shape ({data.shape[0]}, num_clusters), "
            f"got {responsibilities.shape}.")
    if num_clusters is not None and responsibilities.shape[-1] != num_clusters:
        raise InvalidInput(
            f"Expected responsibilities for {num_clusters} clusters, got {responsibilities.shape[-1]}.")
    if responsibilities.shape[-1] == 0:
        raise InvalidInput("Responsibilities must cover at least one cluster.")
    if jnp.any(responsibilities < 0) or not jnp.all(jnp.isfinite(responsibilities)):
        raise InvalidInput("Responsibilities must be finite and non-negative.")
    return data, responsibilities

def _log_update(name, posterior_params, stats):
    if not logger.isEnabledFor(logging.DEBUG):
        return
    logger.debug("%s: cluster means %s", name, stats.means)
    logger.debug("%s: quadratic forms %s", name, stats.quadratic_forms)
    logger.debug("%s: cluster weights %s", name, stats.weights)
    for k, weight in enumerate(stats.weights.tolist()):
        if weight > LOG_WEIGHT_THRESHOLD:
            logger.debug("%s: cluster %d, weight %s, %s",
                         name, k, weight, posterior_summary(posterior_params, k))

def move_natural(prior_params, posterior_params, data, responsibilities, pace, repeat=1.):
    """Natural-gradient update of the cluster posteriors for streaming data.

    The cluster statistics of this batch are counted `repeat` times (e.g. the
    ratio of dataset size to minibatch size), the conjugate posterior given
    those statistics is computed, and every parameter is moved a fraction
    `pace` of the way from its current value toward it. With pace=1 and
    repeat=1 this is the exact batch update.

    Arguments
        prior_params (PriorParameters)
        posterior_params (PosteriorParameters([k,...]))
        data[n,d]
        responsibilities[n,k]
        pace (float): Step size in [0, 1]. A pace of 0 returns
            `posterior_params` unchanged.
        repeat (float): Non-negative multiplier on the batch statistics.

    Returns
        updated_params (PosteriorParameters([k,...]))

    Raises
        InvalidInput: Mis-shaped inputs or out-of-range pace and repeat.
        NumericalFailure: Updated scale matrices are not finite or not
            positive-definite; `err.clusters` lists the offending clusters.
    """
    data, responsibilities = _validate_responsibilities(
        data, responsibilities, num_clusters(posterior_params), dim(posterior_params))
    if not 0. <= pace <= 1.:
        raise InvalidInput(f"Pace must be in [0, 1], got {pace}.")
    if not repeat >= 0.:
        raise InvalidInput(f"Repeat must be non-negative, got {repeat}.")
    _validate_prior(prior_params, dim(posterior_params))

    # A zero pace leaves the posterior untouched, even if the target is not finite
    if pace == 0.:
        return posterior_params

    updated_params, stats = _jitted_natural_step(
        prior_params, posterior_params, data, responsibilities, pace, repeat)

    for name, arr in updated_params._asdict().items():
        _raise_if_nonfinite(arr, f"move_natural ({name})", matrix=(name == 'scale'))

    # Check that the updated scale matrices are positive-definite
    eigvals = jnp.linalg.eigvalsh(updated_params.scale)
    not_pd = jnp.nonzero(jnp.any(eigvals <= 0., axis=-1))[0].tolist()
    if not_pd:
        raise NumericalFailure(
            f"move_natural: scale matrices of clusters {not_pd} are not positive-definite.", not_pd)

    _log_update('move_natural', updated_params, stats)
    return updated_params

def update(prior_params, posterior_params, data, responsibilities):
    """Batch variational update of the cluster posteriors.

    Replaces every cluster's parameters with the conjugate Normal-Wishart
    posterior given the responsibility-weighted statistics of the data.
    Equivalent to `move_natural(..., pace=1., repeat=1.)`.

    Arguments
        prior_params (PriorParameters)
        posterior_params (PosteriorParameters([k,...]))
        data[n,d]
        responsibilities[n,k]

    Returns
        updated_params (PosteriorParameters([k,...]))
    """
    return move_natural(prior_params, posterior_params, data, responsibilities,
                        pace=1., repeat=1.)
