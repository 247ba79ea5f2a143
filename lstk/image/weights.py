import numpy

from .errors import ConfigurationError

class WeightMatrix:
    """Small dense matrix of real coupling coefficients.

    Rows are indexed by level-set phase; columns by phase (curvature coupling)
    or by feature component (propagation, advection, and Laplacian smoothing
    coupling). The size is fixed at construction.

    Example:
        curvature = WeightMatrix.identity(2)
        propagation = WeightMatrix(2, 1)
        propagation.fill(10)
        propagation[1, 0] = -10
    """
    def __init__(self, rows, cols, value=0):
        rows, cols = int(rows), int(cols)
        if rows < 1 or cols < 1:
            raise ValueError('Weight matrix dimensions must be positive, not ({}, {}).'.format(rows, cols))
        self._values = numpy.full((rows, cols), value, dtype=float)

    @classmethod
    def from_array(cls, values):
        """Construct a matrix holding a copy of a 2D array-like of values."""
        values = numpy.asarray(values, dtype=float)
        if values.ndim != 2:
            raise ValueError('Weight matrix values must be two-dimensional.')
        matrix = cls(*values.shape)
        matrix._values[:] = values
        return matrix

    @classmethod
    def identity(cls, n):
        matrix = cls(n, n)
        matrix.set_identity()
        return matrix

    @property
    def shape(self):
        return self._values.shape

    @property
    def rows(self):
        return self._values.shape[0]

    @property
    def cols(self):
        return self._values.shape[1]

    @property
    def array(self):
        """Copy of the coefficients as a float ndarray."""
        return self._values.copy()

    def fill(self, value):
        self._values.fill(value)

    def set_identity(self):
        """Ones on the main diagonal, zeros elsewhere (also for non-square matrices)."""
        self._values.fill(0)
        numpy.fill_diagonal(self._values, 1)

    def row(self, i):
        return self._values[self._check_index(i, 0)].copy()

    def _check_index(self, i, axis):
        size = self._values.shape[axis]
        i = int(i)
        if not 0 <= i < size:
            raise IndexError('Index {} out of range for weight matrix dimension of size {}.'.format(i, size))
        return i

    def __getitem__(self, index):
        i, j = index
        return float(self._values[self._check_index(i, 0), self._check_index(j, 1)])

    def __setitem__(self, index, value):
        i, j = index
        self._values[self._check_index(i, 0), self._check_index(j, 1)] = value

    def __eq__(self, other):
        if not isinstance(other, WeightMatrix):
            return NotImplemented
        return self.shape == other.shape and numpy.array_equal(self._values, other._values)

    def __repr__(self):
        return 'WeightMatrix({})'.format(self._values.tolist())

    def check_shape(self, rows, cols, name='weight matrix', columns='components'):
        """Raise ConfigurationError unless this matrix is rows x cols."""
        if self.shape != (rows, cols):
            raise ConfigurationError('{} must be {}x{} (phases x {}), but is {}x{}.'.format(
                name, rows, cols, columns, *self.shape))

    def frozen(self):
        """Read-only snapshot of the coefficients, for use during a run."""
        values = self._values.copy()
        values.flags.writeable = False
        return values
