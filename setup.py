from setuptools import setup, find_packages

setup(
    name="sodascan",
    version="0.4.0",
    description="Soda data quality scan task: staged execution, typed results and metrics",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "requests",
        "pyyaml",
        "colorama",
        "docker",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "sodascan=sodascan.cli:main",
        ],
    },
    python_requires=">=3.8",
)
