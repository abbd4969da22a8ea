"""Setup configuration for tokenshare."""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="tokenshare-cli",
    version="0.1.0",
    author="Eve",
    description="OAuth device-flow credentials shared across CLI processes",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/yourusername/tokenshare",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries",
    ],
    python_requires=">=3.9",
    install_requires=[
        "click>=8.0",
        "rich>=13.0",
        "pyyaml>=6.0",
        "httpx>=0.24.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
            "respx>=0.20",
        ],
    },
    entry_points={
        "console_scripts": [
            "tokenshare=tokenshare.cli:cli",
        ],
    },
)
