"""Setup file for development installation."""

from setuptools import setup, find_packages

setup(
    name="coach-chat",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.9",
    install_requires=[
        "fastapi",
        "httpx",
        "pydantic>=2",
        "pydantic-settings",
        "structlog",
        "prometheus-client",
        "opentelemetry-instrumentation-fastapi",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
)
