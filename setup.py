from setuptools import setup, find_packages

setup(
    name="workflow-engine",
    version="0.1.0",
    description="Deterministic workflow engine for spec-driven agent runs",
    author="MCP Team",
    packages=find_packages(exclude=["*.tests", "*.tests.*"]),
    package_data={
        "workflow_engine": [
            "builtin/workflows/*.yaml",
            "builtin/agents/*.md",
            "builtin/prompts/*.md",
        ],
    },
    install_requires=[
        "pydantic>=2.0.0",
        "PyYAML>=6.0",
        "click>=8.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "black>=22.0.0",
            "isort>=5.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "workflow=scripts.workflow_cli:main",
        ],
    },
    python_requires=">=3.10",
)
