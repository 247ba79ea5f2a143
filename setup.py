import setuptools

setuptools.setup(
    name = 'lstk',
    version = '1.0',
    description = 'multi-phase level-set segmentation tools',
    packages = setuptools.find_packages(exclude=['tests']),
    python_requires='>=3.6',
    install_requires=['numpy', 'scipy'],
    extras_require={'test': ['pytest']},
)
