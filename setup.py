from setuptools import setup, find_packages

setup(
    name='rosadj',  # Rosenbrock integrators with adjoint sensitivities
    version='0.1.0',
    description='Rosenbrock stiff ODE integrators with discrete and continuous adjoints',
    package_dir={'': 'src/python'},
    packages=find_packages('src/python'),
    python_requires='>=3.8',
    install_requires=[
        'torch',
        'numpy',
        'scipy',
    ],
    extras_require={
        'test': ['pytest'],
        'examples': ['matplotlib'],   # plotting in examples/python
    },
)
