from setuptools import setup, find_packages  # ignore: type

setup(
    name="stock_loader",
    version="1.0.0",
    description="Bulk-load daily stock price CSV files into an Elasticsearch or OpenSearch cluster",
    packages=find_packages(exclude=("tests", "tests.*")),
    install_requires=["requests", "pyyaml", "Click", "cerberus", "pydantic"],
    extras_require={
        "test": ["pytest", "pytest-mock", "requests-mock"],
    },
    entry_points={
        "console_scripts": [
            "stock-loader = stock_loader.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Database",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "License :: OSI Approved :: Apache Software License",
    ],
)
