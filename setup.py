#!/usr/bin/env python3
"""
Setup script for Brightness Sync
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README for long description
readme_path = Path(__file__).parent / "README.md"
long_description = readme_path.read_text() if readme_path.exists() else ""

setup(
    name="brightness-sync",
    version="1.0.0",
    description="Mirror the laptop panel's brightness onto DDC/CI monitors on Linux",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["main"],
    include_package_data=True,
    package_data={
        "brightness_sync": ["*.yaml"],
    },
    python_requires=">=3.8",
    install_requires=[
        "customtkinter>=5.0.0",
        "PyYAML>=6.0",
        "Pillow>=9.0.0",
    ],
    extras_require={
        "x11": [
            "python-xlib>=0.33",
        ],
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "brightness-sync=main:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: X11 Applications",
        "Intended Audience :: End Users/Desktop",
        "Operating System :: POSIX :: Linux",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Desktop Environment",
        "Topic :: System :: Hardware",
    ],
)
