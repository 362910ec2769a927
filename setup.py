from setuptools import find_packages, setup

setup( name='SDFBrickServices',
       version='0.1',
       description='Validation, decoding and sparse assembly of bricked signed-distance-field volumes',
       packages=find_packages(exclude=('unit_tests',)),
       python_requires='>=3.8',
       install_requires=[
           'numpy',
           'numba',
           'jsonschema',
           'ruamel.yaml',
       ],
       extras_require={
           'test': ['pytest'],
       }
     )
