# setup.py
from setuptools import setup, find_packages

setup(
    name="listing-scout",
    version="0.1.0",
    description="Business-directory discovery: crawls, map data and enrichment batches",
    packages=find_packages(include=["listing_scout", "listing_scout.*"]),
    package_data={"listing_scout": ["templates/*.j2"]},
    install_requires=[
        "aiohttp>=3.9",
        "beautifulsoup4>=4.12",
        "lxml>=4.9",
        "pydantic>=2.5",
        "PyYAML>=6.0",
        "click>=8.1",
        "Jinja2>=3.1",
        "SQLAlchemy>=2.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "listing-scout=listing_scout.cli:cli",
        ],
    },
    python_requires=">=3.11",
)
