"""
apiscope - Per-tab API endpoint monitor for CDP-based browsers
"""
from setuptools import setup

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="apiscope",
    version="0.1.0",
    description="Per-tab API endpoint statistics for CDP-based browsers",
    long_description=long_description,
    long_description_content_type="text/markdown",
    # Treat current directory as the apiscope package
    packages=['apiscope'],
    package_dir={'apiscope': '.'},
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Testing",
        "Topic :: Software Development :: Debuggers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.9",
    install_requires=[
        "playwright>=1.40.0",
        "requests>=2.31.0",
        "deepdiff>=6.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
    entry_points={
        "console_scripts": [
            "apiscope=apiscope.cli:main",
        ],
    },
)
