from setuptools import setup, find_packages


setup(
    name="asar",
    version="0.1",
    packages=find_packages(include=["asar", "asar.*"]),
    description="Pack, list and extract asar archives with optional content encryption.",
    author="vercingetorx",
    install_requires=[
        "pycryptodomex>=3.23.0",
        "argon2-cffi>=23.1.0",
    ],
    entry_points={
        "console_scripts": [
            "asar=asar.cli:main",
        ]
    },
)
