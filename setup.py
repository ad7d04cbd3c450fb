# -*- encoding: utf-8 -*-
from setuptools import setup, find_packages

with open('README.rst', 'r', encoding='utf-8') as fh:
    long_description = fh.read()


def get_version(package_path):
    import os
    from importlib.util import module_from_spec, spec_from_file_location
    spec = spec_from_file_location('version', os.path.join('src', package_path, '_version.py'))
    module = module_from_spec(spec)
    spec.loader.exec_module(module)
    return module.__version__


version = get_version('pgoperator')

setup(
    name='pgoperator',
    version=version,
    description='Kubernetes operator reconciling PostgreSQL database resources into services and StatefulSets',
    long_description=long_description,
    long_description_content_type='text/x-rst',
    classifiers="""Development Status :: 3 - Alpha
Environment :: Console
Intended Audience :: System Administrators
License :: OSI Approved :: Apache Software License
Operating System :: POSIX
Programming Language :: Python :: 3.8
Programming Language :: Python :: 3.9
Topic :: Database
Topic :: System :: Clustering
""" [:-1].split('\n'),
    keywords='kubernetes operator postgres',
    license='Apache-2.0',
    packages=find_packages('src', exclude=['*.tests', '*.tests.*']),
    package_dir={
        '': 'src',
    },
    package_data={
        'pgoperator': ['schemas/*/*.yaml'],
    },
    zip_safe=False,
    install_requires=[
        'ruamel.yaml>=0.17,<0.18',
        'cerberus>=1.2,<2',
        'semantic_version>=2.6.0,<3',
        'structlog>=21.5.0',
        'colorama>=0.4.1,<1',
        'requests>=2.20.0,<3',
        'pykube-ng>=20.4.1',
        'kopf>=1.29,<2',
    ],
    extras_require={
        'dev': ['parameterized', 'pytest'],
    },
    python_requires='>=3.8',
    entry_points="""
        [console_scripts]
            pgoperator = pgoperator.scripts.pgoperator:main
    """,
)
