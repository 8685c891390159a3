# Package installation script

from setuptools import setup, find_namespace_packages

setup(
    name="osmium_hub",
    version="0.1.0",
    packages=find_namespace_packages(where="src", include=["osmium_hub", "osmium_hub.*"]),
    package_dir={"": "src"},
    entry_points={
        "console_scripts": [
            "osmium_hub=osmium_hub.__main__:main",
        ],
    },
    install_requires=[
        "fastapi",
        "hypercorn",
        "pyyaml",
        "aiomqtt>=2.0",
        "pydantic>=2",
        "croniter",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "httpx",
        ],
    },
)
