import numpy
import pytest

from lstk.image import level_set_filter
from lstk.image import segmentation_function
from lstk.image import weights

def circle(shape, center, radius):
    """Signed distance to a circle: negative inside."""
    x, y = numpy.indices(shape)
    return numpy.hypot(x - center[0], y - center[1]) - radius

@pytest.fixture
def two_phase_function():
    """Two phases, one feature component: identity curvature coupling and
    uniform weights of 10 for everything else."""
    phases, components = 2, 1
    propagation = weights.WeightMatrix(phases, components)
    advection = weights.WeightMatrix(phases, components)
    smoothing = weights.WeightMatrix(phases, components)
    propagation.fill(10.0)
    advection.fill(10.0)
    smoothing.fill(10.0)
    return segmentation_function.VectorSegmentationFunction(
        curvature_weights=weights.WeightMatrix.identity(phases),
        propagation_weights=propagation,
        advection_weights=advection,
        laplacian_smoothing_weights=smoothing)

@pytest.fixture
def flat_filter(two_phase_function):
    lsf = level_set_filter.LevelSetFilter(two_phase_function, number_of_iterations=5)
    lsf.input = numpy.zeros((10, 10, 2), dtype=numpy.float32)
    lsf.feature_image = numpy.zeros((10, 10, 1), dtype=numpy.float32)
    return lsf

@pytest.fixture
def blob_feature():
    x, y = numpy.indices((24, 24))
    return numpy.exp(-((x - 12)**2 + (y - 11)**2) / 30.0)[..., numpy.newaxis]
