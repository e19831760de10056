import logging

import jax.numpy as jnp

from nwmix.errors import InvalidInput, MissingResource
from nwmix.utils import (as_float_array, bounding_box, invert, load_centers,
                         seed_centers)
from nwmix.normal_wishart._model import (PriorParameters,
                                         PosteriorParameters,
                                         CenterInitialization,
                                         _validate_data,
                                         _validate_prior,
                                         _validate_num_clusters)

__all__ = [
    'FINITE_BASE_DOF',
    'FINITE_BASE_PRECISION_SCALE',
    'initialize_base_for_unbounded_model',
    'initialize_base_for_finite_model',
    'initialize_centers',
    'initialize_atoms_for_unbounded_model',
    'initialize_atoms_for_finite_model',
]

logger = logging.getLogger(__name__)

FINITE_BASE_DOF = 0.1
FINITE_BASE_PRECISION_SCALE = 0.1

# ------------------------------------------------------------------------------

def initialize_base_for_unbounded_model(data, centered=False):
    """Derive the base distribution of an unbounded (Dirichlet process) mixture
    from the bounding box of the data.

    The degrees of freedom equal the data dimension, the precision scale is
    R^-2 for the width R of the widest dimension, and the inverse scale
    matrix is the identity. The location is placed at `min + width` along
    each dimension, i.e. the far corner of the bounding box, unless
    `centered=True`, in which case it is the box midpoint.

    Arguments
        data[n,d]
        centered (bool)

    Returns
        PriorParameters
    """
    data = _validate_data(data)
    num_dims = data.shape[-1]

    box = bounding_box(data)
    widths = box[:, 1] - box[:, 0]
    radius = jnp.max(widths)
    if not radius > 0:
        raise InvalidInput("Data must have non-zero extent in at least one dimension.")

    offset = 0.5 * widths if centered else widths
    scale_inv = jnp.eye(num_dims)
    return PriorParameters(
        loc=box[:, 0] + offset,
        precision_scale=radius**-2,
        dof=as_float_array(num_dims),
        scale=invert(scale_inv),
        scale_inv=scale_inv,
    )

def initialize_base_for_finite_model(dim,
                                     dof=FINITE_BASE_DOF,
                                     precision_scale=FINITE_BASE_PRECISION_SCALE,):
    """Weak base distribution for a finite mixture: zero location and identity scale."""
    if int(dim) != dim or dim <= 0:
        raise InvalidInput(f"Dimension must be a positive integer, got {dim}.")
    dim = int(dim)
    return PriorParameters(
        loc=jnp.zeros(dim),
        precision_scale=as_float_array(precision_scale),
        dof=as_float_array(dof),
        scale=jnp.eye(dim),
        scale_inv=jnp.eye(dim),
    )

# ------------------------------------------------------------------------------

def initialize_centers(data, num_clusters, seed, centers_path=None):
    """Choose initial cluster centers, from file if given, else from the data.

    A missing or unreadable file is not an error: the failure is logged and
    the centers are seeded by farthest-point sampling instead. Malformed
    files raise InvalidInput.

    Returns
        CenterInitialization
    """
    data = _validate_data(data)
    num_clusters = _validate_num_clusters(num_clusters)

    if centers_path is not None:
        try:
            centers = load_centers(centers_path, num_clusters, data.shape[-1])
            init = CenterInitialization(centers=centers, used_fallback=False)
        except MissingResource as err:
            logger.warning("%s Falling back to farthest-point seeding.", err)
            init = CenterInitialization(centers=seed_centers(data, num_clusters, seed),
                                        used_fallback=True)
    else:
        init = CenterInitialization(centers=seed_centers(data, num_clusters, seed),
                                    used_fallback=False)

    logger.debug("initialized cluster centers as: %s", init.centers)
    return init

def initialize_atoms_for_unbounded_model(prior_params, data, num_clusters, seed):
    """Seed the cluster posteriors of an unbounded mixture.

    Locations are chosen by farthest-point seeding; every cluster starts with
    unit precision scale and the base distribution's Wishart belief.

    Arguments
        prior_params (PriorParameters)
        data[n,d]
        num_clusters (int)
        seed (jr.PRNGKey)

    Returns
        PosteriorParameters
    """
    data = _validate_data(data)
    _validate_prior(prior_params, data.shape[-1])
    num_clusters = _validate_num_clusters(num_clusters)

    centers = initialize_centers(data, num_clusters, seed).centers
    scale = invert(prior_params.scale_inv)
    return PosteriorParameters(
        loc=centers,
        precision_scale=jnp.ones(num_clusters),
        dof=prior_params.dof * jnp.ones(num_clusters),
        scale=jnp.tile(scale, (num_clusters, 1, 1)),
    )

def initialize_atoms_for_finite_model(prior_params, data, num_clusters, seed, centers_path=None):
    """Seed the cluster posteriors of a finite mixture with the base distribution.

    Arguments
        prior_params (PriorParameters)
        data[n,d]
        num_clusters (int)
        seed (jr.PRNGKey)
        centers_path (str or None): Optional file of initial centers.

    Returns
        posterior_params (PosteriorParameters)
        center_init (CenterInitialization): Records whether the centers file
            was missing and farthest-point seeding was used instead.
    """
    data = _validate_data(data)
    _validate_prior(prior_params, data.shape[-1])
    num_clusters = _validate_num_clusters(num_clusters)

    center_init = initialize_centers(data, num_clusters, seed, centers_path)
    posterior_params = PosteriorParameters(
        loc=center_init.centers,
        precision_scale=prior_params.precision_scale * jnp.ones(num_clusters),
        dof=prior_params.dof * jnp.ones(num_clusters),
        scale=jnp.tile(prior_params.scale, (num_clusters, 1, 1)),
    )
    return posterior_params, center_init
