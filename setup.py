"""Setup configuration for bitstats"""

from setuptools import setup, find_packages

setup(
    name="bitstats",
    version="0.1.0",
    description=(
        "CLI tool that mirrors Bitbucket Cloud pull request, comment, commit, "
        "and approval data into a local cache and exports it as CSV."
    ),
    author="bitstats Contributors",
    author_email="",
    python_requires=">=3.10",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "requests>=2.28.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "black>=22.0",
            "flake8>=4.0",
            "mypy>=0.950",
        ],
    },
    entry_points={
        "console_scripts": [
            "bitstats=bitstats.main:main",
        ],
    },
)
