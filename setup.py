"""setuptools setup for FocusLedger.

Install for development:
    pip install -e ".[test]"
"""

from setuptools import find_packages, setup

setup(
    name="focusledger",
    version="0.1.0",
    description="Local session history, statistics and achievements for a focus timer",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "SQLAlchemy>=2.0",
        "PyQt6>=6.4",
    ],
    extras_require={
        "test": ["pytest>=7"],
    },
)
