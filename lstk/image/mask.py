import numpy
from scipy import ndimage

def signed_distance(mask, spacing=1.0):
    """Return a level set for a binary mask: the Euclidean distance to the
    region boundary, negative inside the mask and positive outside.

    Values at voxels adjacent to the boundary are +/-1 (in units of spacing),
    so the zero level lies between inside and outside voxels.

    Parameters:
        mask: boolean array of any dimensionality, True inside the region. It
            must contain both inside and outside voxels.
        spacing: scalar or per-axis voxel spacing (see ndimage.distance_transform_edt).
    """
    mask = numpy.asarray(mask).astype(bool)
    if mask.all() or not mask.any():
        raise ValueError('Mask must contain both inside and outside voxels to define a boundary.')
    outside = ndimage.distance_transform_edt(~mask, sampling=spacing)
    inside = ndimage.distance_transform_edt(mask, sampling=spacing)
    return outside - inside

def level_set_from_masks(masks, spacing=1.0):
    """Build a multi-phase level set from one mask per phase.

    Parameters:
        masks: sequence of P boolean arrays with identical shapes.
        spacing: scalar or per-axis voxel spacing.

    Returns: float array of shape mask_shape + (P,), suitable as the input of
        a LevelSetFilter running a VectorSegmentationFunction.
    """
    masks = [numpy.asarray(m) for m in masks]
    if len(masks) == 0:
        raise ValueError('At least one mask is required.')
    if any(m.shape != masks[0].shape for m in masks):
        raise ValueError('All masks must have the same shape.')
    return numpy.stack([signed_distance(m, spacing) for m in masks], axis=-1)

def inside_masks(level_set):
    """Return the region inside the zero level of each phase of a level set
    with shape grid_shape + (P,), as a list of P boolean arrays."""
    level_set = numpy.asarray(level_set)
    return [level_set[..., p] < 0 for p in range(level_set.shape[-1])]

def largest_region(mask, structure=None):
    """Return a mask containing only the largest connected region of the input
    mask (e.g. to clean up inside_masks() output after an evolution).

    Parameters:
        mask: boolean array of any dimensionality.
        structure: connectivity structuring element (see ndimage.label); the
            default connects face-adjacent voxels only.
    """
    mask = numpy.asarray(mask).astype(bool)
    labels, num_regions = ndimage.label(mask, structure=structure)
    if num_regions == 0:
        return numpy.zeros(mask.shape, dtype=bool)
    areas = numpy.bincount(labels.ravel())[1:]
    return labels == areas.argmax() + 1
