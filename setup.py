from setuptools import setup, find_packages


setup(
    name="seqarc",
    version="0.1",
    packages=find_packages(include=["seqarc", "seqarc.*"]),
    description="Random-access reader for compressed multi-sample genome archives.",
    author="vercingetorx",
    python_requires=">=3.8",
    install_requires=[
        "zstandard>=0.22.0",
        "pycryptodomex>=3.23.0",
        "argon2-cffi>=23.1.0",
    ],
)
