from setuptools import setup, find_packages

setup(
    name='geostage',
    version='0.1.0',
    description='Spatial data staging: load, align, clip, derive, sample and extract',
    packages=find_packages(exclude=['tests', 'tests.*']),
    python_requires='>=3.11',
    install_requires=[
        'numpy',
        'pandas',
        'geopandas>=1.0',
        'shapely>=2.0',
        'pyproj',
        'rasterio',
        'rioxarray',
        'xarray',
        'dask',
        'affine<3',
        'scipy',
        'rio-cogeo',
        'requests',
        'tqdm',
        'pyyaml',
        'pyhere',
        'typer',
        'typing_extensions',
    ],
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'geostage=geostage.cli:app',
        ],
    },
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
    ],
)
