import numpy

# Pad modes that keep a 3-point stencil inside the padded array and give a
# well-defined boundary condition. 'edge' is the zero-flux (Neumann) policy.
BOUNDARY_MODES = ('edge', 'symmetric', 'reflect', 'wrap')

def pad_grid(array, grid_ndim, mode='edge', width=1):
    """Pad the first grid_ndim axes of an array by 'width' elements on each
    side, leaving any trailing (phase or component) axes alone.

    Parameters:
        array: ndarray of shape grid_shape + extra_shape
        grid_ndim: number of leading spatial axes
        mode: boundary policy, one of BOUNDARY_MODES. 'edge' repeats the
            border value, which makes one-sided differences across the grid
            boundary zero (zero-flux / Neumann condition).
        width: number of ghost elements to add on each side.
    """
    if mode not in BOUNDARY_MODES:
        raise ValueError('Boundary mode must be one of {}, not "{}".'.format(', '.join(BOUNDARY_MODES), mode))
    padding = [(width, width)] * grid_ndim + [(0, 0) for _ in range(array.ndim - grid_ndim)]
    return numpy.pad(array, padding, mode=mode)

def offset_view(padded, offset, width=1):
    """Return a view of a padded array, shifted by 'offset', with the shape of
    the original un-padded grid.

    offset_view(padded, (0, 0)) is the original grid; offset_view(padded, (1, 0))
    holds, at each position, the value of the neighbor one step along axis 0.
    Trailing axes beyond len(offset) are passed through untouched.
    """
    index = []
    for size, o in zip(padded.shape, offset):
        assert abs(o) <= width
        index.append(slice(width + o, size - width + o))
    return padded[tuple(index)]

def padded_slab(padded, start, stop, width=1):
    """Return the view of a padded array needed to evaluate stencils for grid
    rows start:stop along axis 0 (the rows plus their ghost rows)."""
    return padded[start:stop + 2*width]

def unit_offset(grid_ndim, axis, step):
    """Offset tuple of length grid_ndim that is 'step' along 'axis', 0 elsewhere."""
    offset = [0] * grid_ndim
    offset[axis] = step
    return tuple(offset)
