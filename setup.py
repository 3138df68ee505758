"""Setup script for the Pix donation service."""

import os

from setuptools import setup, find_packages

HERE = os.path.dirname(os.path.abspath(__file__))

setup(
    name="pix-donations",
    version="1.0.0",
    description="Pix donation charges with idempotent webhook reconciliation and live notifications",
    author="ML Roadmap Bootcamp",
    python_requires=">=3.10",
    packages=find_packages(include=["pix_donations", "pix_donations.*"]),
    install_requires=[
        line.strip()
        for line in open(os.path.join(HERE, "requirements.txt"))
        if line.strip() and not line.startswith("#") and not line.startswith("git+")
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
            "pytest-mock>=3.12.0",
            "aiosqlite>=0.19.0",
        ],
        "dev": [
            "black>=23.0.0",
            "isort>=5.12.0",
            "flake8>=6.0.0",
            "mypy>=1.4.0",
            "pytest-cov>=4.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "pix-donations=pix_donations.api.main:run",
        ]
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Framework :: FastAPI",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
