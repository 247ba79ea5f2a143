'''
Image
-----
Level-set evolution over N-dimensional image grids.
 - image.level\_set\_filter: LevelSetFilter, the evolution engine, and its EvolutionState.
 - image.segmentation\_function: VectorSegmentationFunction and ScalarSegmentationFunction update rules.
 - image.weights: WeightMatrix coupling coefficients.
 - image.speed\_advection: speed and advection fields derived from a feature image.
 - image.finite\_difference: difference stencils and curvature terms.
 - image.neighborhood: padded grids and offset views.
 - image.mask: signed-distance level sets from masks, and mask cleanup.
 - image.threaded: thread pool evaluating updates over slabs of the grid.
 - image.errors: ConfigurationError and NumericalInstabilityError.
'''
