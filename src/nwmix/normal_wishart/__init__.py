"""Normal-Wishart posteriors over the components of a Gaussian mixture.

Maintains the variational posterior over the location and precision of K
Gaussian clusters under a shared, conjugate Normal-Wishart base
distribution. Given data and soft cluster assignments (responsibilities)
computed elsewhere, the posteriors are either replaced by their exact
conjugate update (`update`) or moved part of the way toward it
(`move_natural`), which supports streaming and minibatch fitting.

As in the rest of this codebase, state is held in immutable NamedTuples of
arrays with a leading cluster dimension, and every update returns new
parameters rather than mutating its arguments.
"""

from ._model import (
    PriorParameters,
    PosteriorParameters,
    ClusterStatistics,
    CenterInitialization,
    num_clusters,
    dim,
    posterior_summary,
    expected_log_precision,
    log_likelihood_fixed_precision,
    predictive_distribution,
    predictive_distributions,
    predictive_log_density,
    map_covariances,
    map_locations,
)

from ._algorithms import (
    quadratic_forms,
    compute_statistics,
    scale_statistics,
    update,
    move_natural,
)

from ._initialization import (
    FINITE_BASE_DOF,
    FINITE_BASE_PRECISION_SCALE,
    initialize_base_for_unbounded_model,
    initialize_base_for_finite_model,
    initialize_centers,
    initialize_atoms_for_unbounded_model,
    initialize_atoms_for_finite_model,
)
