"""Finite-difference stencils for level-set evolution.

All operators here work on a single scalar field that has already been padded
by one ghost element along each spatial axis (see neighborhood.pad_grid), and
return arrays with the un-padded grid shape. Grid spacing is given per axis,
so derivatives are in physical units.

Notation used below, per axis d with spacing h:
    D-  = (phi[x] - phi[x-1]) / h        (backward)
    D+  = (phi[x+1] - phi[x]) / h        (forward)
    D0  = (phi[x+1] - phi[x-1]) / 2h     (central)
    Ddd = (phi[x+1] - 2 phi[x] + phi[x-1]) / h**2
"""

import numpy

from . import neighborhood

# squared gradient norms below this are treated as flat (no defined normal)
MIN_NORM_SQUARED = 1e-12

def as_spacing(spacing, grid_ndim):
    """Return a per-axis tuple of floats from a scalar or sequence spacing."""
    if numpy.isscalar(spacing):
        spacing = (spacing,) * grid_ndim
    spacing = tuple(float(h) for h in spacing)
    if len(spacing) != grid_ndim:
        raise ValueError('Spacing must be a scalar or have one value per grid axis ({} values).'.format(grid_ndim))
    if not all(h > 0 for h in spacing):
        raise ValueError('Grid spacing must be positive.')
    return spacing

def stability_scale(spacing):
    """Return (sum(1/h), sqrt(sum(1/h**2)), sum(1/h**2)) for a spacing tuple,
    the factors that convert advection, propagation and diffusion speeds into
    per-voxel rates for the time-step bound."""
    inv = numpy.array([1/h for h in spacing])
    inv2 = (inv**2).sum()
    return inv.sum(), numpy.sqrt(inv2), inv2

class PhaseDerivatives:
    """Cache of one-sided, central, and second differences of one padded
    level-set phase. Construct once per phase per iteration, then ask for
    whichever composite terms are needed."""
    def __init__(self, padded, spacing):
        self.padded = padded
        self.spacing = spacing
        self.ndim = len(spacing)
        self.center = neighborhood.offset_view(padded, (0,) * self.ndim)
        self.backward = []
        self.forward = []
        self.central = []
        self.second = []
        for axis, h in enumerate(spacing):
            plus = neighborhood.offset_view(padded, neighborhood.unit_offset(self.ndim, axis, 1))
            minus = neighborhood.offset_view(padded, neighborhood.unit_offset(self.ndim, axis, -1))
            self.forward.append((plus - self.center) / h)
            self.backward.append((self.center - minus) / h)
            self.central.append((plus - minus) / (2*h))
            self.second.append((plus - 2*self.center + minus) / h**2)

    def cross(self, i, j):
        """Mixed second derivative along axes i and j (i != j)."""
        def corner(si, sj):
            offset = [0] * self.ndim
            offset[i] = si
            offset[j] = sj
            return neighborhood.offset_view(self.padded, tuple(offset))
        return (corner(1, 1) - corner(1, -1) - corner(-1, 1) + corner(-1, -1)) / (4 * self.spacing[i] * self.spacing[j])

    def gradient_norm_squared(self):
        return sum(c**2 for c in self.central)

    def laplacian(self):
        return sum(self.second)

    def curvature_term(self):
        """Return kappa * |grad phi|, where kappa = div(grad phi / |grad phi|)
        is the (summed principal) curvature of the level sets of phi:

            kappa |grad phi| = (|grad phi|**2 lap(phi) - sum_ij phi_i phi_j phi_ij) / |grad phi|**2

        Zero where the field is flat."""
        grad2 = self.gradient_norm_squared()
        numerator = sum(second * (grad2 - c**2) for second, c in zip(self.second, self.central))
        for i in range(self.ndim):
            for j in range(i+1, self.ndim):
                numerator = numerator - 2 * self.central[i] * self.central[j] * self.cross(i, j)
        out = numpy.zeros(numpy.shape(numerator), dtype=float)
        numpy.divide(numerator, grad2, out=out, where=grad2 > MIN_NORM_SQUARED)
        # keep non-finite values visible to the caller's stability check
        bad = ~numpy.isfinite(numerator)
        out[bad] = numerator[bad]
        return out

    def upwind_gradient_norm(self, speed):
        """Osher-Sethian upwind |grad phi| for the motion phi_t + speed |grad phi| = 0.

        Where speed > 0 information flows outward, so the norm is built from
        max(D-, 0) and min(D+, 0); elsewhere from min(D-, 0) and max(D+, 0).
        'speed' may be a scalar or an array with the grid shape."""
        outward = sum(numpy.maximum(b, 0)**2 + numpy.minimum(f, 0)**2 for b, f in zip(self.backward, self.forward))
        inward = sum(numpy.minimum(b, 0)**2 + numpy.maximum(f, 0)**2 for b, f in zip(self.backward, self.forward))
        return numpy.sqrt(numpy.where(speed > 0, outward, inward))

    def upwind_advection(self, advection):
        """Return advection . grad phi with each axis derivative taken upwind:
        D- where the advection component is positive, D+ otherwise.

        advection: array of shape grid_shape + (ndim,)."""
        total = numpy.zeros(self.center.shape, dtype=float)
        for axis in range(self.ndim):
            a = advection[..., axis]
            total += a * numpy.where(a > 0, self.backward[axis], self.forward[axis])
        return total
