from setuptools import setup, find_packages


setup(
    name="shroud",
    version="0.1",
    packages=find_packages(include=["shroud", "shroud.*"]),
    description="Passphrase encryption for single files and whole directory trees, with optional name hiding.",
    author="vercingetorx",
    python_requires=">=3.9",
    install_requires=[
        "pycryptodomex>=3.23.0",
        "argon2-cffi>=23.1.0",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "shroud=shroud.cli:main",
        ]
    },
)
