"""Iterative evolution of (multi-phase) level sets toward image features.

Example usage:
    level_set # float array, shape grid_shape + (P,), negative inside regions
    feature   # array, shape grid_shape + (C,), e.g. image intensities

    function = VectorSegmentationFunction(
        curvature_weights=WeightMatrix.identity(P),
        propagation_weights=propagation, # P x C WeightMatrix
        advection_weights=advection)     # P x C WeightMatrix
    lsf = LevelSetFilter(function, number_of_iterations=200, maximum_rms_error=0.001)
    lsf.input = level_set
    lsf.feature_image = feature
    lsf.run() # level_set is evolved in place
    print(lsf.elapsed_iterations, lsf.rms_change)

Unless the caller provides explicit speed and advection fields on the function
(or through the filter), they are generated from the feature image when the
run starts (see speed_advection) and kept for later runs. Call modified() after
changing the input or feature arrays in place to have them regenerated.

Each iteration computes the update for the entire grid from the level set as
it stood at the start of the iteration, picks the largest stable time step
    dt = min(maximum_time_step, cfl / max_rate)
where max_rate is the largest per-voxel stability rate reported by the
segmentation function, and then applies level_set += dt * update. Iteration
stops after number_of_iterations steps, or earlier once the RMS of the
per-voxel change (dt * update) falls below maximum_rms_error.
"""

import logging

import numpy

from . import threaded
from .errors import ConfigurationError, NumericalInstabilityError

logger = logging.getLogger(__name__)

class STATUS:
    IDLE = 'idle' # no run attempted yet
    INITIALIZING = 'initializing' # validating inputs and resolving fields
    ITERATING = 'iterating'
    TERMINATED = 'terminated' # finished successfully
    FAILED = 'failed' # a configuration or numerical error stopped the run

class EvolutionState:
    def __init__(self, reverse_expansion_direction=False, auto_generate_speed_advection=True):
        """Record of a single run. The two toggles are copied from the filter
        when the run starts and stay fixed for that run."""
        self.status = STATUS.IDLE
        self.elapsed_iterations = 0
        self.rms_change = 0.0
        self.time_step = None
        self.stop_reason = None
        self.reverse_expansion_direction = bool(reverse_expansion_direction)
        self.auto_generate_speed_advection = bool(auto_generate_speed_advection)

    def __repr__(self):
        return 'EvolutionState(status={!r}, elapsed_iterations={}, rms_change={:g})'.format(
            self.status, self.elapsed_iterations, self.rms_change)

class StoppingCondition:
    def __init__(self, max_iterations, maximum_rms_error=0):
        """Decide when to stop iterating, based on the total number of
        iterations and the RMS change of the last iteration.

        Usage example:
            stopper = StoppingCondition(max_iterations=50, maximum_rms_error=0.01)
            while stopper.should_continue(state):
                ... # one iteration, updating state.elapsed_iterations and state.rms_change

        Parameters:
            max_iterations: total number of iterations permitted
            maximum_rms_error: stop once an iteration's RMS change is strictly
                less than this value. With the default of 0, only the
                iteration budget stops the evolution.
        """
        self.max_iterations = max_iterations
        self.maximum_rms_error = maximum_rms_error

    def should_continue(self, state):
        if state.elapsed_iterations >= self.max_iterations:
            state.stop_reason = 'maximum iterations reached'
            return False
        if state.elapsed_iterations > 0 and state.rms_change < self.maximum_rms_error:
            state.stop_reason = 'RMS change below tolerance'
            return False
        return True

class LevelSetFilter:
    def __init__(self, function=None, number_of_iterations=100, maximum_rms_error=0.0,
            time_step=None, maximum_time_step=1.0, cfl=0.5, number_of_threads=1):
        """Evolution engine for level-set segmentation.

        Parameters:
            function: segmentation function (update rule) to evolve with, e.g.
                a VectorSegmentationFunction or ScalarSegmentationFunction.
            number_of_iterations: maximum number of iterations per run.
            maximum_rms_error: convergence tolerance on the RMS per-voxel change.
            time_step: if not None, use this fixed time step instead of the
                computed stable one.
            maximum_time_step: upper bound for the computed time step.
            cfl: fraction (0, 1] of the stability limit used as time step.
            number_of_threads: if > 1, evaluate updates in slabs along the
                first grid axis on this many threads.

        All of these, along with the reverse_expansion_direction and
        auto_generate_speed_advection attributes, may be changed between runs.
        """
        self._function = None
        self._feature_image = None
        self.segmentation_function = function
        self.number_of_iterations = number_of_iterations
        self.maximum_rms_error = maximum_rms_error
        self.time_step = time_step
        self.maximum_time_step = maximum_time_step
        self.cfl = cfl
        self.number_of_threads = number_of_threads
        self.reverse_expansion_direction = False
        self.auto_generate_speed_advection = True
        self.input = None
        self.generated_speed_field = None
        self.generated_advection_fields = {}
        self._dirty = True
        self._generated_with = None # (sigma, spacing) of the cached generated fields
        self.state = EvolutionState()

    @property
    def segmentation_function(self):
        return self._function

    @segmentation_function.setter
    def segmentation_function(self, function):
        self._function = function
        if function is not None and self._feature_image is not None:
            function.feature_image = self._feature_image
        self._dirty = True

    @property
    def feature_image(self):
        if self._function is not None and self._function.feature_image is not None:
            return self._function.feature_image
        return self._feature_image

    @feature_image.setter
    def feature_image(self, feature):
        if feature is not self.feature_image:
            self._dirty = True
        self._feature_image = feature
        if self._function is not None:
            self._function.feature_image = feature

    @property
    def output(self):
        """The evolved level set: the input array, modified in place."""
        return self.input

    @property
    def elapsed_iterations(self):
        return self.state.elapsed_iterations

    @property
    def rms_change(self):
        return self.state.rms_change

    @property
    def speed_field(self):
        """The caller's speed field if one was set, otherwise the generated one
        (or None)."""
        if self._function is not None and self._function.speed_field is not None:
            return self._function.speed_field
        return self.generated_speed_field

    @speed_field.setter
    def speed_field(self, speed):
        self._require_function().speed_field = speed

    def set_advection_field(self, component, field):
        self._require_function().set_advection_field(component, field)

    def get_advection_field(self, component):
        """The caller's advection field for a component if one was set,
        otherwise the generated one (or None)."""
        if self._function is not None:
            field = self._function.get_advection_field(component)
            if field is not None:
                return field
        return self.generated_advection_fields.get(component)

    def modified(self):
        """Mark the input level set and feature image as changed: the next run
        regenerates any auto-generated speed and advection fields.

        Changes to the segmentation function's sigma or spacing are detected
        without a call to modified()."""
        self._dirty = True

    def _discard_stale_fields(self, function):
        settings = (function.sigma, numpy.ravel(function.spacing).tolist())
        if self._dirty or settings != self._generated_with:
            self.generated_speed_field = None
            self.generated_advection_fields = {}
        self._dirty = False
        self._generated_with = settings

    def _require_function(self):
        if self._function is None:
            raise ConfigurationError('No segmentation function has been set.')
        return self._function

    def _check_inputs(self):
        function = self._require_function()
        return function.check_inputs(self.input, self.feature_image)

    def generate_speed_field(self):
        """Generate (or regenerate) the speed field from the feature image and
        return it. The explicit speed field, if set, still takes precedence
        during runs. Runs reuse the returned field until the inputs are
        marked modified()."""
        function = self._require_function()
        self._check_inputs()
        self._discard_stale_fields(function)
        self.generated_advection_fields = {}
        self.generated_speed_field = function.calculate_speed_field(self.feature_image)
        return self.generated_speed_field

    def generate_advection_fields(self):
        """Generate (or regenerate) one advection field per feature component
        from the generated speed field and return them as a dict keyed by
        component."""
        function = self._require_function()
        grid_shape, phases, components = self._check_inputs()
        self._discard_stale_fields(function)
        if self.generated_speed_field is None:
            self.generate_speed_field()
        speed = function.check_speed_field(self.generated_speed_field, grid_shape, components)
        fields = function.calculate_advection_fields(speed, len(grid_shape))
        self.generated_advection_fields = dict(enumerate(fields))
        return self.generated_advection_fields

    def run(self):
        """Evolve the input level set in place and return it.

        Raises ConfigurationError (before touching the level set) if inputs,
        weights, or fields are inconsistent, and NumericalInstabilityError if
        an iteration produces non-finite values; in the latter case the level
        set holds the result of the last completed iteration.
        """
        state = EvolutionState(self.reverse_expansion_direction, self.auto_generate_speed_advection)
        self.state = state
        state.status = STATUS.INITIALIZING
        try:
            grid_shape = self._initialize(state)
        except BaseException:
            state.status = STATUS.FAILED
            raise
        state.status = STATUS.ITERATING
        pool = threaded.SlabPool(self.number_of_threads) if self.number_of_threads > 1 else None
        stopper = StoppingCondition(self.number_of_iterations, self.maximum_rms_error)
        try:
            while stopper.should_continue(state):
                self._iterate(state, grid_shape, pool)
        except BaseException:
            state.status = STATUS.FAILED
            raise
        finally:
            if pool is not None:
                pool.shutdown()
        state.status = STATUS.TERMINATED
        logger.info('level-set evolution stopped after %d iteration(s) (%s); RMS change %g',
            state.elapsed_iterations, state.stop_reason, state.rms_change)
        return self.output

    def _initialize(self, state):
        if self.number_of_iterations < 0:
            raise ConfigurationError('Number of iterations must be non-negative.')
        if not 0 < self.cfl <= 1:
            raise ConfigurationError('CFL number must be in (0, 1].')
        if self.time_step is not None and not self.time_step > 0:
            raise ConfigurationError('A fixed time step must be positive.')
        if not self.maximum_time_step > 0:
            raise ConfigurationError('Maximum time step must be positive.')
        if self.number_of_threads < 1:
            raise ConfigurationError('Number of threads must be at least 1.')
        function = self._require_function()
        grid_shape, phases, components = function.check_inputs(self.input, self.feature_image)
        function.bind(grid_shape, phases, components)
        self._discard_stale_fields(function)
        speed = self._resolve_speed(state, function, grid_shape, components)
        advection = self._resolve_advection(state, function, grid_shape, components)
        function.prepare_terms(speed, advection, state.reverse_expansion_direction)
        logger.debug('initialized evolution: grid %s, %d phase(s), %d component(s), speed %s, advection components %s',
            grid_shape, phases, components, 'none' if speed is None else 'set', sorted(advection))
        return grid_shape

    def _resolve_speed(self, state, function, grid_shape, components):
        if function.speed_field is not None:
            return function.check_speed_field(function.speed_field)
        if not state.auto_generate_speed_advection:
            return None
        if self.generated_speed_field is None:
            self.generated_speed_field = function.calculate_speed_field(self.feature_image)
        return function.check_speed_field(self.generated_speed_field)

    def _resolve_advection(self, state, function, grid_shape, components):
        fields = function.explicit_advection_fields()
        if state.auto_generate_speed_advection and len(fields) < components:
            if not self.generated_advection_fields:
                if self.generated_speed_field is None:
                    self.generated_speed_field = function.calculate_speed_field(self.feature_image)
                speed = function.check_speed_field(self.generated_speed_field)
                self.generated_advection_fields = dict(enumerate(function.calculate_advection_fields(speed, len(grid_shape))))
            for component, field in self.generated_advection_fields.items():
                fields.setdefault(component, field)
        return fields

    def _iterate(self, state, grid_shape, pool):
        function = self._function
        padded = function.pad(self.input)
        if pool is None:
            update, max_rate = function.compute_update(padded)
        else:
            ranges, results = pool.map_slabs(lambda start, stop: function.compute_update(padded, start, stop), grid_shape[0])
            update = numpy.concatenate([u for u, r in results], axis=0)
            max_rate = max(r for u, r in results)
        if not numpy.isfinite(max_rate) or not numpy.isfinite(update).all():
            raise NumericalInstabilityError('Non-finite level-set update in iteration {}.'.format(state.elapsed_iterations + 1))
        time_step = self._time_step(max_rate)
        if not (numpy.isfinite(time_step) and time_step > 0):
            raise NumericalInstabilityError('Unusable time step {} in iteration {}.'.format(time_step, state.elapsed_iterations + 1))
        change = time_step * update
        numpy.add(self.input, change, out=self.input, casting='same_kind')
        state.elapsed_iterations += 1
        state.time_step = time_step
        state.rms_change = float(numpy.sqrt(numpy.mean(change**2)))
        logger.debug('iteration %d: time step %g, RMS change %g', state.elapsed_iterations, time_step, state.rms_change)

    def _time_step(self, max_rate):
        if self.time_step is not None:
            if self.time_step * max_rate > 1:
                logger.warning('fixed time step %g exceeds the stability limit %g', self.time_step, 1 / max_rate)
            return float(self.time_step)
        if max_rate <= 0:
            return float(self.maximum_time_step)
        return min(float(self.maximum_time_step), self.cfl / max_rate)
