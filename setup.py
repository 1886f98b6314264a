from setuptools import setup, find_packages


setup(
    name="seqdata",
    version="0.1",
    packages=find_packages(include=["seqdata", "seqdata.*"]),
    description="A minimal file format for a sequence of length-prefixed binary chunks.",
    author="vercingetorx",
    python_requires=">=3.8",
    install_requires=[],
    entry_points={
        "console_scripts": [
            "seqdata=seqdata.cli:main",
        ]
    },
)
