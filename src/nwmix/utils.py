"""Linear-algebra and distribution primitives used by the cluster engine."""

from functools import partial
from pathlib import Path

from jax import dtypes, jit, lax
import jax.numpy as jnp
import jax.random as jr
from jax.scipy.linalg import solve_triangular
from jax.scipy.special import digamma
from jax.tree_util import tree_map
import numpy as onp

from jaxtyping import Array, Float
from tensorflow_probability.substrates.jax import tf2jax as tf
from tensorflow_probability.substrates.jax.distributions import (
    MultivariateStudentTLinearOperator)

from nwmix.errors import InvalidInput, MissingResource

__all__ = [
    'invert',
    'bounding_box',
    'seed_centers',
    'load_centers',
    'expected_log_det',
    'multivariate_student_t',
    'step',
    'cluster_weights',
]

def as_float_array(x):
    """Convert to a jax array of the default floating-point dtype."""
    return jnp.asarray(x, dtype=dtypes.canonicalize_dtype(jnp.float64))

@jit
def invert(matrix: Float[Array, "... D D"]) -> Float[Array, "... D D"]:
    """Invert symmetric positive-definite matrices via their Cholesky factor.

    The Cholesky factorization of a matrix which is singular or not
    positive-definite contains NaNs, and so does the returned inverse.
    Callers are expected to check the result with `jnp.isfinite`.
    """
    dim = matrix.shape[-1]
    chol = jnp.linalg.cholesky(matrix)
    eye = jnp.broadcast_to(jnp.eye(dim, dtype=matrix.dtype), matrix.shape)
    chol_inv = solve_triangular(chol, eye, lower=True)
    return jnp.swapaxes(chol_inv, -1, -2) @ chol_inv

@jit
def bounding_box(data: Float[Array, "N D"]) -> Float[Array, "D 2"]:
    """Return the (min, max) of each dimension of the data."""
    return jnp.stack([jnp.min(data, axis=0), jnp.max(data, axis=0)], axis=-1)

@partial(jit, static_argnums=1)
def seed_centers(data: Float[Array, "N D"], num_clusters: int, seed: jr.PRNGKey,
                 ) -> Float[Array, "K D"]:
    """Choose `num_clusters` centers from the data by farthest-point (Gonzalez) seeding.

    The first center is a uniformly random data point. Each subsequent center
    is the data point with the largest squared distance to its closest
    already-chosen center.
    """
    first = jr.randint(seed, (), 0, data.shape[0])
    dists = jnp.sum((data - data[first])**2, axis=-1)

    def _step(curr_dists, _):
        idx = jnp.argmax(curr_dists)
        new_dists = jnp.sum((data - data[idx])**2, axis=-1)
        return jnp.minimum(curr_dists, new_dists), idx

    _, remaining = lax.scan(_step, dists, None, length=num_clusters - 1)
    indices = jnp.concatenate([first[None], remaining])
    return data[indices]

def load_centers(path, num_clusters, dim=None):
    """Load initial cluster centers from file, one center per row.

    Files with a `.npy` suffix are read with `numpy.load`; all other files are
    read as comma-delimited text. If the file has more than `num_clusters`
    rows, only the first `num_clusters` are used.

    Arguments
        path (str or Path)
        num_clusters (int)
        dim (int or None): If given, expected length of each center.

    Returns
        centers[k,d]

    Raises
        MissingResource: if `path` does not exist or cannot be read.
        InvalidInput: if the contents cannot be parsed or have the wrong shape.
    """
    path = Path(path)
    if not path.exists():
        raise MissingResource(f"Center file {path} does not exist.")

    try:
        if path.suffix == '.npy':
            centers = onp.load(path)
        else:
            centers = onp.loadtxt(path, delimiter=',', ndmin=2)
    except OSError as err:
        raise MissingResource(f"Center file {path} could not be read: {err}") from err
    except ValueError as err:
        raise InvalidInput(f"Could not parse cluster centers from {path}: {err}") from err

    if centers.ndim != 2:
        raise InvalidInput(f"Expected a 2-D array of centers in {path}, got shape {centers.shape}.")
    if len(centers) < num_clusters:
        raise InvalidInput(f"Expected at least {num_clusters} centers in {path}, found {len(centers)}.")
    if dim is not None and centers.shape[-1] != dim:
        raise InvalidInput(f"Expected centers of dimension {dim} in {path}, found {centers.shape[-1]}.")

    return as_float_array(centers[:num_clusters])

@jit
def expected_log_det(scale: Float[Array, "... D D"], dof: Float[Array, "..."]) -> Float[Array, "..."]:
    """E[log|Λ|] for Λ ~ Wishart(scale, dof)."""
    dim = scale.shape[-1]
    dof = jnp.asarray(dof)
    chol = jnp.linalg.cholesky(scale)
    log_det_scale = 2 * jnp.sum(jnp.log(jnp.diagonal(chol, axis1=-2, axis2=-1)), axis=-1)
    psi_terms = jnp.sum(digamma(0.5 * (dof[..., None] + 1 - jnp.arange(1, dim + 1))), axis=-1)
    return psi_terms + dim * jnp.log(2.0) + log_det_scale

def multivariate_student_t(loc, sigma, df):
    """Construct a multivariate Student-t distribution from its location,
    (positive-definite) scale matrix `sigma`, and degrees of freedom.

    Batched arguments produce a distribution with the corresponding batch shape.
    """
    scale_tril = jnp.linalg.cholesky(sigma)
    return MultivariateStudentTLinearOperator(
        df=df, loc=loc, scale=tf.linalg.LinearOperatorLowerTriangular(scale_tril))

def step(old, target, pace):
    """Move `old` toward `target` by fraction `pace`, leaf-wise over pytrees."""
    return tree_map(lambda o, t: (1 - pace) * o + pace * t, old, target)

def cluster_weights(responsibilities: Float[Array, "N K"]) -> Float[Array, "K"]:
    """Total responsibility assigned to each cluster."""
    return jnp.sum(responsibilities, axis=0)
