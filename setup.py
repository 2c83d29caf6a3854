"""Setup script for the Conductor package."""

from setuptools import setup, find_packages

setup(
    name="conductor",
    version="0.1.0",
    packages=find_packages(include=["conductor", "conductor.*"]),
    python_requires=">=3.10",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn>=0.27",
        "httpx>=0.27",
        "pydantic>=2.6",
        "pydantic-settings>=2.2",
        "structlog>=24.1",
        "prometheus-client>=0.20",
        "langchain-core>=0.2",
        "python-dotenv>=1.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "pytest-httpx>=0.30",
        ],
    },
    description="Conductor - multi-stage tool-calling orchestration pipeline",
    author="Conductor Team",
)
