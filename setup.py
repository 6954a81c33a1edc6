from setuptools import setup, find_packages

setup(
    name="spacegraph-layout",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "numpy",
        "networkx",
        "pydantic>=2",
        "fastapi",
        "uvicorn",
        "pandas",
        "shapely",
        "matplotlib",
        "seaborn"
    ],
    extras_require={
        "test": [
            "pytest",
            "httpx"
        ]
    }
)
