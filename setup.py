"""
Setup script for trivia-feed-engine.

The trivia feed engine is the question-selection core of the trivia app:

1. Deduplicates questions by content fingerprint
2. Learns per-topic interest weights from answers and skips
3. Builds an endless feed that never shows a resolved question twice
4. Syncs weight changes between devices through an offline-first outbox

The 'triviafeed' command exposes the engine for imports, inspection and sync.
"""

from setuptools import find_packages, setup

setup(
    name="trivia-feed-engine",
    version="1.0.0",
    description="Adaptive trivia question selection and weight synchronization engine",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["config"],
    python_requires=">=3.11",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Database
        "sqlalchemy>=2.0.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # HTTP
        "httpx>=0.25.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "triviafeed=triviafeed.cli.main:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Developers",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Games/Entertainment",
    ],
    keywords="trivia feed recommendation offline-sync",
)
