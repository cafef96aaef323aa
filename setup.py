from setuptools import find_packages, setup

setup(
    name="iowatcher",
    version="0.1.0",
    description="Run actions on filesystem changes, with a record of every firing",
    author="Araray Velho",
    packages=find_packages(exclude=["tests", "tests.*", "examples"]),
    python_requires=">=3.8",
    install_requires=[
        "click",
        "toml",
        "pyyaml",
        "python-daemon",
        "rich",
        "psutil",
        "watchdog",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "iowatcher=iowatcher.cli:main"
        ]
    },
)
