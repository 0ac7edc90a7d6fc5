from setuptools import setup, find_packages  # ignore: type

setup(
    name="index_migrator",
    version="1.0.0",
    description="Migrate business indices between Elasticsearch and OpenSearch clusters and reconcile the results",
    packages=find_packages(exclude=("tests", "tests.*")),
    install_requires=["requests", "boto3", "pyyaml", "Click", "cerberus", "pydantic", "tinydb"],
    extras_require={
        "test": ["pytest", "pytest-mock", "requests-mock", "moto"],
    },
    entry_points={
        "console_scripts": [
            "index-migrator = index_migrator.cli:main",
        ],
    },
    python_requires=">=3.10",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Build Tools",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "License :: OSI Approved :: Apache Software License",
    ],
)
