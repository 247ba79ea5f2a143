"""Per-voxel update rules for multi-phase level-set segmentation.

A segmentation function computes, for every voxel and phase, the rate of
change of the level set from four weighted contributions:

    update_p = - F_p |grad phi_p|       (propagation, upwind)
               - A_p . grad phi_p       (advection, upwind)
               + sum_q Wcurv[p,q] kappa_q |grad phi_q|    (curvature)
               + L_p lap(phi_p)         (Laplacian smoothing)

with, for feature components c:
    F_p = s * sum_c Wprop[p,c] S_c      (s = -1 if the expansion direction is reversed)
    A_p = sum_c Wadv[p,c] V_c
    L_p = sum_c Wlap[p,c]

where S_c is the speed field and V_c the advection field of component c.
Level sets are negative inside a region, so a positive propagation speed
grows the region. Each phase evolves by its own row of the weight matrices;
off-diagonal curvature weights let the curvature of one phase drive another.

Functions do not own the evolution loop: a LevelSetFilter binds one to its
inputs and then repeatedly asks it for updates. Updates are computed from a
padded copy of the pre-iteration level set and never write to it.

VectorSegmentationFunction handles level sets of shape grid_shape + (P,)
with features of shape grid_shape + (C,). ScalarSegmentationFunction is the
single-phase, single-component case with plain grid-shaped arrays and scalar
weights.
"""

import collections

import numpy

from . import finite_difference
from . import neighborhood
from . import speed_advection
from .errors import ConfigurationError
from .weights import WeightMatrix

UpdateTerms = collections.namedtuple('UpdateTerms', ['propagation', 'curvature', 'advection', 'smoothing'])

def _as_weight_matrix(weights):
    if weights is None or isinstance(weights, WeightMatrix):
        return weights
    return WeightMatrix.from_array(weights)

class VectorSegmentationFunction:
    def __init__(self, curvature_weights=None, propagation_weights=None, advection_weights=None,
            laplacian_smoothing_weights=None, spacing=1.0, sigma=1.0, boundary_mode='edge'):
        """Update rule for multi-phase (vector-valued) level sets.

        Parameters:
            curvature_weights: phases x phases WeightMatrix (or 2D array-like).
                Row p weights the curvature terms of every phase in the update
                of phase p. Defaults to the identity.
            propagation_weights, advection_weights, laplacian_smoothing_weights:
                phases x components WeightMatrix (or 2D array-like). Default to
                zeros.
            spacing: scalar or per-axis physical grid spacing.
            sigma: gaussian smoothing (in pixels) applied to the feature image
                when speed and advection fields are generated from it.
            boundary_mode: how the grid is extended past its border for
                stencils; see neighborhood.BOUNDARY_MODES. The default 'edge'
                is a zero-flux boundary.

        Weights are checked against the input shapes and copied when a filter
        binds the function at the start of a run, so changes made during a
        run apply from the next run on.
        """
        self.curvature_weights = _as_weight_matrix(curvature_weights)
        self.propagation_weights = _as_weight_matrix(propagation_weights)
        self.advection_weights = _as_weight_matrix(advection_weights)
        self.laplacian_smoothing_weights = _as_weight_matrix(laplacian_smoothing_weights)
        self.spacing = spacing
        self.sigma = sigma
        if boundary_mode not in neighborhood.BOUNDARY_MODES:
            raise ValueError('Boundary mode must be one of {}.'.format(', '.join(neighborhood.BOUNDARY_MODES)))
        self.boundary_mode = boundary_mode
        self.feature_image = None
        # caller-supplied fields, stored by reference
        self.speed_field = None
        self._advection_fields = {}
        self._bound = False

    def set_curvature_weights(self, weights):
        self.curvature_weights = _as_weight_matrix(weights)

    def set_propagation_weights(self, weights):
        self.propagation_weights = _as_weight_matrix(weights)

    def set_advection_weights(self, weights):
        self.advection_weights = _as_weight_matrix(weights)

    def set_laplacian_smoothing_weights(self, weights):
        self.laplacian_smoothing_weights = _as_weight_matrix(weights)

    def set_advection_field(self, component, field):
        """Provide the advection field (shape grid_shape + (ndim,)) for one
        feature component. Pass None to clear it."""
        component = int(component)
        if component < 0:
            raise IndexError('Feature component index must be non-negative.')
        if field is None:
            self._advection_fields.pop(component, None)
        else:
            self._advection_fields[component] = field

    def get_advection_field(self, component):
        return self._advection_fields.get(int(component))

    ## layout hooks: the scalar variant overrides these
    def grid_ndim(self, level_set):
        return level_set.ndim - 1

    def phase_array(self, array):
        """View of a level-set (or feature) array with a trailing phase (or
        component) axis."""
        return array

    def update_array(self, update):
        """Convert an update with a trailing phase axis to the level-set layout."""
        return update

    def check_inputs(self, level_set, feature):
        """Validate the level set and feature image against each other.

        Returns: grid_shape, phase_count, component_count
        """
        if level_set is None:
            raise ConfigurationError('No input level set has been provided.')
        if feature is None:
            raise ConfigurationError('No feature image has been provided.')
        if not numpy.issubdtype(level_set.dtype, numpy.floating):
            raise ConfigurationError('The level set must have a floating-point dtype, not {}.'.format(level_set.dtype))
        grid_ndim = self.grid_ndim(level_set)
        if grid_ndim < 1:
            raise ConfigurationError('The level set needs at least one spatial axis plus the phase axis.')
        phases = self.phase_array(level_set)
        features = self.phase_array(numpy.asarray(feature))
        grid_shape = phases.shape[:-1]
        if 0 in phases.shape:
            raise ConfigurationError('The level set is empty (shape {}).'.format(level_set.shape))
        if features.ndim != phases.ndim or features.shape[:-1] != grid_shape:
            raise ConfigurationError('Feature image grid {} does not match level-set grid {}.'.format(
                features.shape[:-1] if features.ndim == phases.ndim else features.shape, grid_shape))
        return grid_shape, phases.shape[-1], features.shape[-1]

    def bind(self, grid_shape, phase_count, component_count):
        """Check the weight matrices against the phase and component counts,
        and take read-only copies of them for the coming run. Unset matrices
        become identity (curvature) or zeros (the others)."""
        self._bound = False
        defaults = [
            ('curvature_weights', phase_count, 'phases', WeightMatrix.identity(phase_count)),
            ('propagation_weights', component_count, 'components', WeightMatrix(phase_count, component_count)),
            ('advection_weights', component_count, 'components', WeightMatrix(phase_count, component_count)),
            ('laplacian_smoothing_weights', component_count, 'components', WeightMatrix(phase_count, component_count))
        ]
        frozen = {}
        for name, cols, columns, default in defaults:
            try:
                weights = _as_weight_matrix(getattr(self, name))
            except (ValueError, TypeError) as e:
                raise ConfigurationError('{}: {}'.format(name.replace('_', ' '), e))
            if weights is None:
                weights = default
            weights.check_shape(phase_count, cols, name.replace('_', ' '), columns)
            frozen[name] = weights.frozen()
        try:
            self._spacing = finite_difference.as_spacing(self.spacing, len(grid_shape))
        except ValueError as e:
            raise ConfigurationError(str(e))
        self._grid_shape = tuple(grid_shape)
        self._phase_count = phase_count
        self._component_count = component_count
        self._curvature = frozen['curvature_weights']
        self._propagation = frozen['propagation_weights']
        self._advection = frozen['advection_weights']
        self._smoothing = frozen['laplacian_smoothing_weights'].sum(axis=1)
        # diffusion coefficient per phase, for the time-step bound
        self._diffusion = numpy.abs(self._curvature).sum(axis=1) + numpy.abs(self._smoothing)
        self._speed = None
        self._advection_vectors = None
        self._bound = True

    def check_speed_field(self, speed, grid_shape=None, components=None):
        """Return the speed field as a grid_shape + (C,) array (broadcasting a
        field shared by all components), or raise ConfigurationError.
        grid_shape and components default to those of the last bind()."""
        speed = numpy.asarray(speed)
        if grid_shape is None:
            grid_shape, components = self._grid_shape, self._component_count
        grid_shape = tuple(grid_shape)
        if speed.shape == grid_shape:
            return numpy.broadcast_to(speed[..., numpy.newaxis], grid_shape + (components,))
        if speed.shape == grid_shape + (components,):
            return speed
        raise ConfigurationError('Speed field must have shape {} or {}, not {}.'.format(
            grid_shape, grid_shape + (components,), speed.shape))

    def check_advection_field(self, component, field):
        field = numpy.asarray(field)
        expected = self._grid_shape + (len(self._grid_shape),)
        if component >= self._component_count:
            raise ConfigurationError('Advection field given for component {}, but the feature image has only {} component(s).'.format(
                component, self._component_count))
        if field.shape != expected:
            raise ConfigurationError('Advection field for component {} must have shape {}, not {}.'.format(
                component, expected, field.shape))
        return field

    def explicit_advection_fields(self):
        """Return the caller-supplied advection fields as a dict keyed by
        component, each checked against the bound grid."""
        return {component: self.check_advection_field(component, field)
            for component, field in sorted(self._advection_fields.items())}

    def calculate_speed_field(self, feature):
        """Generate a speed field from the feature image (see speed_advection)."""
        feature = numpy.asarray(feature)
        grid_ndim = self.phase_array(feature).ndim - 1
        return speed_advection.speed_field(feature, self.sigma, self._spacing_for(grid_ndim), grid_ndim)

    def calculate_advection_fields(self, speed, grid_ndim=None):
        """Generate one advection field per component from a speed field as
        returned by calculate_speed_field() (or any grid_shape + (C,) array,
        given grid_ndim)."""
        speed = numpy.asarray(speed)
        if grid_ndim is None:
            grid_ndim = self.phase_array(speed).ndim - 1
        return speed_advection.advection_fields(speed, self._spacing_for(grid_ndim), grid_ndim)

    def _spacing_for(self, grid_ndim):
        return finite_difference.as_spacing(self.spacing, grid_ndim)

    def prepare_terms(self, speed, advection_fields, reverse_expansion_direction=False):
        """Combine the resolved fields with the bound weights into per-phase
        propagation speeds and advection vectors, fixed for the whole run.

        Parameters:
            speed: grid_shape + (C,) array, or None for no propagation.
            advection_fields: dict mapping component to grid_shape + (ndim,)
                arrays. Missing components contribute no advection.
            reverse_expansion_direction: if True, negate the propagation speed.
        """
        assert self._bound
        if speed is None:
            self._speed = None
        else:
            self._speed = numpy.asarray(speed, dtype=float) @ self._propagation.T # grid_shape + (P,)
            if reverse_expansion_direction:
                self._speed = -self._speed
        if not advection_fields:
            self._advection_vectors = None
        else:
            vectors = numpy.zeros(self._grid_shape + (self._phase_count, len(self._grid_shape)))
            for component, field in advection_fields.items():
                weights = self._advection[:, component] # shape (P,)
                vectors += numpy.asarray(field, dtype=float)[..., numpy.newaxis, :] * weights[:, numpy.newaxis]
            self._advection_vectors = vectors

    def pad(self, level_set):
        """Return a padded float copy of the level set (with a trailing phase
        axis) for computing updates."""
        phases = numpy.asarray(self.phase_array(level_set), dtype=float)
        return neighborhood.pad_grid(phases, len(self._grid_shape), self.boundary_mode)

    def _derivatives(self, padded, start, stop):
        slab = neighborhood.padded_slab(padded, start, stop)
        return [finite_difference.PhaseDerivatives(slab[..., p], self._spacing) for p in range(self._phase_count)]

    def _curvature_terms(self, derivatives):
        # only phases that are weighted into some update need a curvature term
        used = numpy.any(self._curvature != 0, axis=0)
        return [d.curvature_term() if u else None for d, u in zip(derivatives, used)]

    def _contributions(self, derivatives, curvatures, phase, start, stop):
        d = derivatives[phase]
        zero = numpy.zeros(d.center.shape)
        if self._speed is None:
            propagation = zero
        else:
            speed = self._speed[start:stop, ..., phase]
            propagation = -speed * d.upwind_gradient_norm(speed)
        curvature = zero
        for weight, term in zip(self._curvature[phase], curvatures):
            if weight != 0:
                curvature = curvature + weight * term
        if self._advection_vectors is None:
            advection = zero
        else:
            advection = -d.upwind_advection(self._advection_vectors[start:stop, ..., phase, :])
        if self._smoothing[phase] == 0:
            smoothing = zero
        else:
            smoothing = self._smoothing[phase] * d.laplacian()
        return UpdateTerms(propagation, curvature, advection, smoothing)

    def contributions(self, padded, phase, start=0, stop=None):
        """Return the four UpdateTerms (propagation, curvature, advection,
        smoothing) for one phase over grid rows start:stop, each with the slab's
        grid shape. compute_update() returns their sum."""
        if stop is None:
            stop = self._grid_shape[0]
        derivatives = self._derivatives(padded, start, stop)
        return self._contributions(derivatives, self._curvature_terms(derivatives), phase, start, stop)

    def compute_update(self, padded, start=0, stop=None):
        """Compute the update for grid rows start:stop (along axis 0).

        Parameters:
            padded: output of pad() for the pre-iteration level set.
            start, stop: range of rows to evaluate; defaults to the whole grid.

        Returns: update, max_rate
            update: rate of change of the level set for those rows, in the
                level-set layout.
            max_rate: largest per-voxel stability rate (1/time) in the slab;
                a stable explicit step must satisfy dt * max_rate <= 1 (times
                the CFL number).
        """
        if stop is None:
            stop = self._grid_shape[0]
        derivatives = self._derivatives(padded, start, stop)
        curvatures = self._curvature_terms(derivatives)
        slab_shape = derivatives[0].center.shape
        update = numpy.empty(slab_shape + (self._phase_count,))
        advection_scale, propagation_scale, diffusion_scale = finite_difference.stability_scale(self._spacing)
        inverse_spacing = 1 / numpy.array(self._spacing)
        rate = numpy.zeros(slab_shape)
        for phase in range(self._phase_count):
            terms = self._contributions(derivatives, curvatures, phase, start, stop)
            update[..., phase] = sum(terms)
            phase_rate = 2 * self._diffusion[phase] * diffusion_scale
            if self._speed is not None:
                phase_rate = phase_rate + numpy.abs(self._speed[start:stop, ..., phase]) * propagation_scale
            if self._advection_vectors is not None:
                phase_rate = phase_rate + (numpy.abs(self._advection_vectors[start:stop, ..., phase, :]) * inverse_spacing).sum(axis=-1)
            rate = numpy.maximum(rate, phase_rate)
        return self.update_array(update), float(rate.max())

class ScalarSegmentationFunction(VectorSegmentationFunction):
    def __init__(self, curvature_weight=1.0, propagation_weight=0.0, advection_weight=0.0,
            laplacian_smoothing_weight=0.0, spacing=1.0, sigma=1.0, boundary_mode='edge'):
        """Update rule for a single level set driven by a scalar feature image.

        Level set and feature image are plain arrays of the grid shape, speed
        fields are grid-shaped, and the single advection field (component 0)
        has shape grid_shape + (ndim,). The weights are scalars; see
        VectorSegmentationFunction for the other parameters.
        """
        super().__init__(
            curvature_weights=[[curvature_weight]],
            propagation_weights=[[propagation_weight]],
            advection_weights=[[advection_weight]],
            laplacian_smoothing_weights=[[laplacian_smoothing_weight]],
            spacing=spacing, sigma=sigma, boundary_mode=boundary_mode)

    def set_weights(self, curvature=None, propagation=None, advection=None, laplacian_smoothing=None):
        """Set any of the four scalar weights."""
        for name, value in [('curvature', curvature), ('propagation', propagation),
                ('advection', advection), ('laplacian_smoothing', laplacian_smoothing)]:
            if value is not None:
                setattr(self, name + '_weights', WeightMatrix(1, 1, value))

    def grid_ndim(self, level_set):
        return level_set.ndim

    def phase_array(self, array):
        return array[..., numpy.newaxis]

    def update_array(self, update):
        return update[..., 0]
