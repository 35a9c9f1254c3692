from setuptools import setup, find_packages

setup(
    name="pointhud",
    version="0.1.0",
    description="Point ledger with daily snapshots, window gains and period leaderboards",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    package_data={"pointhud": ["schemas/*.json"]},
    install_requires=[
        "typer>=0.9.0",
        "sqlalchemy>=2.0.0",
        "pydantic>=2.0.0",
        "python-dateutil>=2.8.2",
        "orjson>=3.8.0",
        "python-dotenv>=1.0.0",
        "jsonschema>=4.17.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "pointhud=pointhud.cli:app",
        ],
    },
    python_requires=">=3.10",
)
