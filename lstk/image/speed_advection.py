"""Derive propagation speed and advection fields from a feature image.

The transform is fixed and deterministic: each feature component is smoothed
with a gaussian of width sigma, the speed for that component is the magnitude
of the smoothed feature's gradient, and the advection field is the gradient
of that speed. The advection therefore points up the edge-strength
landscape, pulling level-set fronts onto the ridges of strongest edges, and
a constant (e.g. all-zero) feature produces zero speed and zero advection.

Usage:
    speed = speed_field(feature, sigma=1.5)     # shape grid_shape + (C,)
    advection = advection_fields(speed)          # list of C arrays, grid_shape + (ndim,)
"""

import logging

import numpy
from scipy import ndimage

logger = logging.getLogger(__name__)

def smoothed_gradient(image, sigma, spacing=1.0):
    """Return the gradient of a gaussian-smoothed image as a list of arrays,
    one per axis.

    Parameters:
        image: scalar ndarray
        sigma: gaussian standard deviation in pixels; 0 disables smoothing.
        spacing: scalar or per-axis grid spacing, for gradients in physical units.
    """
    if sigma < 0:
        raise ValueError('Smoothing sigma must be non-negative.')
    image = numpy.asarray(image, dtype=float)
    if sigma > 0:
        image = ndimage.gaussian_filter(image, sigma, mode='nearest')
    if numpy.isscalar(spacing):
        spacing = (spacing,) * image.ndim
    if any(size < 2 for size in image.shape):
        # numpy.gradient needs two samples along each axis; a single-sample
        # axis carries no variation.
        return [numpy.zeros_like(image) for _ in range(image.ndim)]
    gradient = numpy.gradient(image, *spacing)
    if image.ndim == 1:
        gradient = [gradient]
    return list(gradient)

def gradient_magnitude(image, sigma, spacing=1.0):
    gradient = smoothed_gradient(image, sigma, spacing)
    return numpy.sqrt(sum(g**2 for g in gradient))

def speed_field(feature, sigma=1.0, spacing=1.0, grid_ndim=None):
    """Return the generated speed field for a multi-component feature image.

    Parameters:
        feature: ndarray of shape grid_shape + (C,)
        sigma, spacing: see smoothed_gradient()
        grid_ndim: number of spatial axes; defaults to feature.ndim - 1.

    Returns: float array of shape grid_shape + (C,)
    """
    feature = numpy.asarray(feature)
    if grid_ndim is None:
        grid_ndim = feature.ndim - 1
    components = feature.shape[grid_ndim:]
    flat = feature.reshape(feature.shape[:grid_ndim] + (-1,))
    speed = numpy.stack([gradient_magnitude(flat[..., c], sigma, spacing) for c in range(flat.shape[-1])], axis=-1)
    logger.debug('generated speed field: shape %s, sigma %g, max %g', speed.shape, sigma, speed.max() if speed.size else 0)
    return speed.reshape(feature.shape[:grid_ndim] + components)

def advection_fields(speed, spacing=1.0, grid_ndim=None):
    """Return one advection field per speed component: the (unsmoothed)
    gradient of that component's speed.

    Parameters:
        speed: ndarray of shape grid_shape + (C,), as returned by speed_field()
        spacing: scalar or per-axis grid spacing.
        grid_ndim: number of spatial axes; defaults to speed.ndim - 1.

    Returns: list of C float arrays, each of shape grid_shape + (grid_ndim,)
    """
    speed = numpy.asarray(speed)
    if grid_ndim is None:
        grid_ndim = speed.ndim - 1
    flat = speed.reshape(speed.shape[:grid_ndim] + (-1,))
    fields = [numpy.stack(smoothed_gradient(flat[..., c], 0, spacing), axis=-1) for c in range(flat.shape[-1])]
    logger.debug('generated %d advection field(s)', len(fields))
    return fields
