# File: mbmdrc/setup.py
# Location: mbmdrc/mbmdrc/setup.py
"""
Setup script for mbmdrc.

This file configures how the package is built, installed, and what
dependencies are required.
"""

import os
from setuptools import setup, find_packages

# Load version from version.py without importing the module
version = {}
with open(os.path.join("mbmdrc", "version.py")) as f:
    exec(f.read(), version)

# Read the README for the long description
this_dir = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(this_dir, "README.md"), encoding="utf-8") as f:
    long_description = f.read()

setup(
    name="mbmdrc",
    version=version["__version__"],
    description="MB-MDR genotype interaction detection and ensemble risk prediction.",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.8",
    install_requires=[
        "numpy",
        "pandas",
        "scipy",
        "statsmodels",
        "scikit-learn",
    ],
    extras_require={"test": ["pytest"]},
    entry_points={"console_scripts": ["mbmdrc=mbmdrc.cli:main"]},
    include_package_data=True,
    package_data={"mbmdrc": ["config.json"]},
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Topic :: Scientific/Engineering :: Bio-Informatics",
    ],
)
