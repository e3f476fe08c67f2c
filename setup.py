from setuptools import setup, find_namespace_packages

setup(
    name="stackpilot",
    version="0.1.0",
    description="Deploy multi-container stacks from compose files",
    packages=find_namespace_packages(where="src", include=["stackpilot*"]),
    package_dir={"": "src"},
    python_requires=">=3.8",
    install_requires=[
        "pydantic>=2.0",
        "pyyaml>=6.0",
        "click>=8.0",
        "tenacity>=8.0",
        "python-dotenv>=1.0",
        "docker>=7.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "stackpilot=stackpilot.CLI.main:main",
        ],
    },
)
