'''
# lstk

Multi-phase level-set segmentation of images and volumes.

A level set represents each segmented region implicitly, as the region where
a real-valued field is negative. Multi-phase level sets carry one such field
per region ("phase") in a trailing array axis, and evolve all phases together
under weighted coupling.

Image
-----
 - image.level\_set\_filter: the evolution engine. Runs a segmentation function over the grid, picks stable time steps, and stops on an iteration budget or RMS-change tolerance.
 - image.segmentation\_function: update rules combining propagation, curvature, advection, and Laplacian-smoothing terms through weight matrices (multi-phase and scalar variants).
 - image.weights: small dense weight matrices coupling phases and feature components.
 - image.speed\_advection: generate speed and advection fields from a feature image by gaussian-smoothed gradients.
 - image.finite\_difference: upwind, central, and second-order difference stencils, curvature and Laplacian terms.
 - image.neighborhood: padding and shifted views for stencils, with a declared boundary policy.
 - image.mask: convert binary masks to signed-distance level sets and back.
'''
