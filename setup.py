from setuptools import setup, find_packages
from pathlib import Path


def read_readme():
    this_directory = Path(__file__).parent
    readme_file = this_directory / 'README.md'
    if readme_file.exists():
        return readme_file.read_text(encoding='utf-8')
    return ""


def get_version():
    import re
    init_file = Path(__file__).parent / 'dbxfer' / '__init__.py'
    if init_file.exists():
        match = re.search(r'__version__\s*=\s*["\']([^"\']+)["\']', init_file.read_text())
        if match:
            return match.group(1)
    return "0.1.0"


setup(
    name="dbxfer",
    version=get_version(),
    description="Cross-server data transfer engine: copy tables and query results between databases.",
    long_description=read_readme(),
    long_description_content_type='text/markdown',
    packages=find_packages(include=['dbxfer', 'dbxfer.*']),
    python_requires=">=3.11",
    install_requires=[
        "pydantic>=2.6",
        "typer>=0.12",
        "psycopg[binary]>=3.1",
        "pyodbc>=5.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Database",
    ],
    keywords="database transfer etl sqlserver postgres sqlite",
    entry_points={
        'console_scripts': [
            'dbxfer=dbxfer.main:app',
        ],
    },
)
