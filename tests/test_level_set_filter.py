import logging

import numpy
import pytest

from lstk.image import errors
from lstk.image import level_set_filter
from lstk.image import segmentation_function
from lstk.image import weights

from conftest import circle

def test_flat_field_is_a_fixed_point(flat_filter):
    output = flat_filter.run()
    assert output is flat_filter.input
    assert (output == 0).all()
    assert flat_filter.elapsed_iterations == 5
    assert flat_filter.state.status == level_set_filter.STATUS.TERMINATED
    flat_filter.reverse_expansion_direction = True
    flat_filter.run()
    assert (flat_filter.output == 0).all()
    assert flat_filter.elapsed_iterations == 5
    assert flat_filter.state.reverse_expansion_direction

def test_stable_time_step(flat_filter):
    flat_filter.run()
    # 2D, spacing 1, diffusion coefficient 1 + 10 per phase
    assert flat_filter.state.time_step == pytest.approx(0.5 / 44)

def test_zero_iterations_leave_input_unchanged(two_phase_function, blob_feature):
    level_set = numpy.stack([circle((24, 24), (12, 12), 5), circle((24, 24), (8, 15), 4)], axis=-1)
    initial = level_set.copy()
    lsf = level_set_filter.LevelSetFilter(two_phase_function, number_of_iterations=0)
    lsf.input = level_set
    lsf.feature_image = blob_feature
    lsf.run()
    numpy.testing.assert_array_equal(level_set, initial)
    assert lsf.elapsed_iterations == 0
    assert lsf.state.stop_reason == 'maximum iterations reached'

def test_auto_generated_fields_are_reused(flat_filter):
    flat_filter.run()
    speed = flat_filter.generated_speed_field
    advection = flat_filter.get_advection_field(0)
    assert speed is not None and advection is not None
    assert flat_filter.speed_field is speed
    flat_filter.run()
    assert flat_filter.generated_speed_field is speed
    assert flat_filter.get_advection_field(0) is advection
    flat_filter.modified()
    flat_filter.run()
    assert flat_filter.generated_speed_field is not speed
    assert flat_filter.get_advection_field(0) is not advection

def test_new_feature_image_regenerates_fields(flat_filter):
    flat_filter.run()
    speed = flat_filter.generated_speed_field
    flat_filter.feature_image = numpy.zeros((10, 10, 1))
    flat_filter.run()
    assert flat_filter.generated_speed_field is not speed

def test_auto_generation_off(flat_filter):
    flat_filter.auto_generate_speed_advection = False
    flat_filter.run()
    assert flat_filter.generated_speed_field is None
    assert flat_filter.get_advection_field(0) is None
    assert not flat_filter.state.auto_generate_speed_advection

def test_explicit_fields_take_precedence(flat_filter):
    speed = numpy.zeros((10, 10, 1))
    advection = numpy.zeros((10, 10, 2))
    flat_filter.speed_field = speed
    flat_filter.set_advection_field(0, advection)
    flat_filter.run()
    assert flat_filter.generated_speed_field is None
    assert flat_filter.generated_advection_fields == {}
    assert flat_filter.speed_field is speed
    assert flat_filter.get_advection_field(0) is advection

def test_explicit_speed_field_is_stored_by_reference(two_phase_function):
    lsf = level_set_filter.LevelSetFilter(two_phase_function)
    speed = numpy.zeros((10, 10))
    two_phase_function.speed_field = speed
    assert lsf.speed_field is speed
    other = numpy.ones((10, 10))
    lsf.speed_field = other
    assert two_phase_function.speed_field is other
    advection = numpy.zeros((10, 10, 2))
    lsf.set_advection_field(0, advection)
    assert two_phase_function.get_advection_field(0) is advection
    assert lsf.get_advection_field(0) is advection

def test_feature_image_is_shared_with_function(two_phase_function):
    feature = numpy.zeros((10, 10, 1))
    lsf = level_set_filter.LevelSetFilter()
    lsf.feature_image = feature
    lsf.segmentation_function = two_phase_function
    assert lsf.feature_image is feature
    assert two_phase_function.feature_image is feature

def test_weight_mismatch_fails_before_iterating(flat_filter, two_phase_function):
    flat_filter.input[:] = numpy.random.RandomState(0).rand(10, 10, 2)
    initial = flat_filter.input.copy()
    two_phase_function.propagation_weights = weights.WeightMatrix(3, 1)
    with pytest.raises(errors.ConfigurationError):
        flat_filter.run()
    numpy.testing.assert_array_equal(flat_filter.input, initial)
    assert flat_filter.state.status == level_set_filter.STATUS.FAILED
    assert flat_filter.elapsed_iterations == 0

def test_missing_inputs(two_phase_function):
    lsf = level_set_filter.LevelSetFilter()
    lsf.input = numpy.zeros((10, 10, 2))
    lsf.feature_image = numpy.zeros((10, 10, 1))
    with pytest.raises(errors.ConfigurationError):
        lsf.run()
    lsf.segmentation_function = two_phase_function
    lsf.feature_image = None
    with pytest.raises(errors.ConfigurationError):
        lsf.run()
    assert lsf.state.status == level_set_filter.STATUS.FAILED

def test_grid_extent_mismatch(flat_filter):
    flat_filter.feature_image = numpy.zeros((10, 9, 1))
    with pytest.raises(errors.ConfigurationError):
        flat_filter.run()

def test_bad_settings(flat_filter):
    flat_filter.cfl = 2
    with pytest.raises(errors.ConfigurationError):
        flat_filter.run()
    flat_filter.cfl = 0.5
    flat_filter.number_of_iterations = -1
    with pytest.raises(errors.ConfigurationError):
        flat_filter.run()

def test_non_finite_update_is_reported(flat_filter):
    flat_filter.input[:] = circle((10, 10), (5, 5), 3)[..., numpy.newaxis]
    initial = flat_filter.input.copy()
    speed = numpy.ones((10, 10))
    speed[4, 4] = numpy.nan
    flat_filter.speed_field = speed
    with pytest.raises(errors.NumericalInstabilityError):
        flat_filter.run()
    numpy.testing.assert_array_equal(flat_filter.input, initial)
    assert flat_filter.state.status == level_set_filter.STATUS.FAILED
    assert flat_filter.elapsed_iterations == 0

def test_reverse_expansion_direction_flips_propagation():
    function = segmentation_function.VectorSegmentationFunction(
        curvature_weights=weights.WeightMatrix(2, 2), propagation_weights=[[1.0], [1.0]])
    function.speed_field = numpy.ones((10, 10))
    ramp = numpy.indices((10, 10))[0] - 4.5
    initial = numpy.stack([ramp, ramp], axis=-1)
    changes = []
    for reverse in (False, True):
        lsf = level_set_filter.LevelSetFilter(function, number_of_iterations=1, time_step=0.1)
        lsf.auto_generate_speed_advection = False
        lsf.reverse_expansion_direction = reverse
        lsf.input = initial.copy()
        lsf.feature_image = numpy.zeros((10, 10, 1))
        lsf.run()
        changes.append(lsf.output - initial)
    forward, reverse = changes
    numpy.testing.assert_allclose(forward[1:-1], -0.1)
    numpy.testing.assert_allclose(reverse[1:-1], -forward[1:-1])

def test_mean_curvature_flow_shrinks_circle():
    level_set = circle((32, 32), (16, 16), 8)
    area = (level_set < 0).sum()
    lsf = level_set_filter.LevelSetFilter(segmentation_function.ScalarSegmentationFunction(), number_of_iterations=20)
    lsf.input = level_set
    lsf.feature_image = numpy.zeros((32, 32))
    lsf.run()
    assert (level_set < 0).sum() < area
    assert lsf.state.time_step == pytest.approx(0.125)

def test_decoupled_phases_evolve_independently():
    phi0 = circle((24, 24), (12, 12), 7)
    phi1 = circle((24, 24), (10, 14), 4)
    vector = level_set_filter.LevelSetFilter(
        segmentation_function.VectorSegmentationFunction(curvature_weights=weights.WeightMatrix.identity(2)),
        number_of_iterations=10)
    vector.input = numpy.stack([phi0, phi1], axis=-1)
    vector.feature_image = numpy.zeros((24, 24, 1))
    vector.run()
    for p, phi in enumerate([phi0.copy(), phi1.copy()]):
        scalar = level_set_filter.LevelSetFilter(segmentation_function.ScalarSegmentationFunction(), number_of_iterations=10)
        scalar.input = phi
        scalar.feature_image = numpy.zeros((24, 24))
        scalar.run()
        numpy.testing.assert_allclose(vector.output[..., p], phi)

def test_propagation_grows_region():
    function = segmentation_function.ScalarSegmentationFunction(curvature_weight=0, propagation_weight=1)
    function.speed_field = numpy.ones((32, 32))
    level_set = circle((32, 32), (16, 16), 5)
    area = (level_set < 0).sum()
    lsf = level_set_filter.LevelSetFilter(function, number_of_iterations=10)
    lsf.input = level_set
    lsf.feature_image = numpy.zeros((32, 32))
    lsf.run()
    assert (level_set < 0).sum() > area

def test_rms_tolerance_stops_early(flat_filter):
    flat_filter.input[:] = circle((10, 10), (5, 5), 3)[..., numpy.newaxis]
    flat_filter.number_of_iterations = 50
    flat_filter.maximum_rms_error = 1e9
    flat_filter.run()
    assert flat_filter.elapsed_iterations == 1
    assert flat_filter.state.stop_reason == 'RMS change below tolerance'

def test_threads_match_single_thread(blob_feature):
    def run(threads):
        function = segmentation_function.VectorSegmentationFunction(
            propagation_weights=[[-1.0], [2.0]], advection_weights=[[5.0], [5.0]],
            laplacian_smoothing_weights=[[0.1], [0.0]], curvature_weights=[[1, 0.5], [0, 1]])
        lsf = level_set_filter.LevelSetFilter(function, number_of_iterations=4, number_of_threads=threads)
        lsf.input = numpy.stack([circle((24, 24), (12, 11), 6), circle((24, 24), (9, 14), 3)], axis=-1)
        lsf.feature_image = blob_feature
        lsf.run()
        return lsf
    single = run(1)
    threaded = run(3)
    numpy.testing.assert_allclose(threaded.output, single.output)
    assert threaded.rms_change == pytest.approx(single.rms_change)

def test_float32_input_is_updated_in_place():
    level_set = circle((16, 16), (8, 8), 4).astype(numpy.float32)
    lsf = level_set_filter.LevelSetFilter(segmentation_function.ScalarSegmentationFunction(), number_of_iterations=3)
    lsf.input = level_set
    lsf.feature_image = numpy.zeros((16, 16))
    output = lsf.run()
    assert output is level_set
    assert output.dtype == numpy.float32
    assert lsf.rms_change > 0

def test_iterations_are_logged(flat_filter, caplog):
    caplog.set_level(logging.DEBUG, logger='lstk.image.level_set_filter')
    flat_filter.run()
    messages = [record.getMessage() for record in caplog.records]
    assert any(m.startswith('iteration 5:') for m in messages)
    assert any('stopped after 5 iteration(s)' in m for m in messages)

def test_generate_methods(flat_filter):
    speed = flat_filter.generate_speed_field()
    assert speed.shape == (10, 10, 1)
    fields = flat_filter.generate_advection_fields()
    assert list(fields) == [0]
    assert fields[0].shape == (10, 10, 2)
    assert flat_filter.get_advection_field(0) is fields[0]

def test_state_repr(flat_filter):
    assert 'idle' in repr(flat_filter.state)
    flat_filter.run()
    assert 'terminated' in repr(flat_filter.state)

def test_weights_assigned_as_arrays(flat_filter, two_phase_function):
    two_phase_function.propagation_weights = numpy.ones((2, 1))
    flat_filter.run()
    two_phase_function.propagation_weights = numpy.ones((3, 1))
    with pytest.raises(errors.ConfigurationError):
        flat_filter.run()
    two_phase_function.curvature_weights = [1.0, 0.0]
    with pytest.raises(errors.ConfigurationError):
        flat_filter.run()
    assert flat_filter.state.status == level_set_filter.STATUS.FAILED

def test_explicit_fields_set_after_generation():
    function = segmentation_function.VectorSegmentationFunction(
        curvature_weights=weights.WeightMatrix(1, 1), propagation_weights=[[1.0]])
    lsf = level_set_filter.LevelSetFilter(function, number_of_iterations=1)
    lsf.input = circle((16, 16), (8, 8), 4)[..., numpy.newaxis]
    lsf.feature_image = numpy.zeros((16, 16, 1))
    initial = lsf.input.copy()
    lsf.run()
    # zero feature: generated speed and advection are zero, so nothing moves
    numpy.testing.assert_array_equal(lsf.output, initial)
    generated_speed = lsf.generated_speed_field
    generated_advection = lsf.generated_advection_fields[0]
    speed = numpy.ones((16, 16))
    advection = numpy.zeros((16, 16, 2))
    lsf.speed_field = speed
    lsf.set_advection_field(0, advection)
    lsf.run()
    assert lsf.speed_field is speed
    assert lsf.get_advection_field(0) is advection
    assert lsf.generated_speed_field is generated_speed
    assert lsf.generated_advection_fields[0] is generated_advection
    change = lsf.output - initial
    assert (change <= 0).all()
    assert (change < 0).any()

def test_changed_smoothing_regenerates_fields(flat_filter, two_phase_function):
    flat_filter.run()
    speed = flat_filter.generated_speed_field
    flat_filter.run()
    assert flat_filter.generated_speed_field is speed
    two_phase_function.sigma = 2.0
    flat_filter.run()
    assert flat_filter.generated_speed_field is not speed
    speed = flat_filter.generated_speed_field
    two_phase_function.spacing = (1.0, 0.5)
    flat_filter.run()
    assert flat_filter.generated_speed_field is not speed

def test_fields_generated_before_run_are_used(flat_filter):
    speed = flat_filter.generate_speed_field()
    flat_filter.run()
    assert flat_filter.speed_field is speed
    fields = flat_filter.generate_advection_fields()
    flat_filter.run()
    assert flat_filter.generated_speed_field is speed
    assert flat_filter.get_advection_field(0) is fields[0]
