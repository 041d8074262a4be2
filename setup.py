import setuptools
from setuptools import find_packages

with open("readme.md", "r") as fh:
    long_description = fh.read()


vars2find = ["__author__", "__version__", "__url__"]
vars2readme = {}
with open("./lexicon_guard/__init__.py") as f:
    for line in f.readlines():
        for v in vars2find:
            if line.startswith(v):
                line = line.replace(" ", "").replace('"', "").replace("'", "").strip()
                vars2readme[v] = line.split("=")[1]

core_deps = [
    "pydantic>=2.0",
    "tenacity",
    "redis[hiredis]>=5.0.1",
]

setuptools.setup(
    name="lexicon-guard",
    url=vars2readme["__url__"],
    version=vars2readme["__version__"],
    author=vars2readme["__author__"],
    description="Backup, version gate and restore for local schema upgrades",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*", "examples"]),
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.9",
    install_requires=core_deps,
    extras_require={
        "api": [
            "fastapi>=0.100.0",
            "pydantic-settings>=2.0",
            "python-multipart",
            "uvicorn",
        ],
        "test": [
            "pytest",
            "pytest-asyncio>=0.21",
            "httpx",
            "fastapi>=0.100.0",
            "pydantic-settings>=2.0",
            "python-multipart",
        ],
    },
)
