from pathlib import Path
from setuptools import find_packages, setup

BASE_DIR = Path(__file__).parent
readme_path = BASE_DIR / "README.md"
version: dict = {}
version_path = BASE_DIR / "gearwatch" / "version.py"
exec(version_path.read_text(), version)

setup(
    name="gearwatch",
    version=version["__version__"],
    description="Equipment loan counters and prioritised notification feed.",
    long_description=readme_path.read_text(encoding="utf-8"),
    long_description_content_type="text/markdown",
    author="gearwatch maintainers",
    license="GPL-3.0",
    packages=find_packages(exclude=("tests", "tests.*", "docs", "scripts")),
    python_requires=">=3.10",
    install_requires=[
        "pyyaml>=6.0",
        "requests>=2.31",
    ],
    extras_require={
        "webui": [
            "fastapi>=0.109",
            "uvicorn>=0.23",
        ],
        "alerts": ["paho-mqtt>=1.6"],
        "test": [
            "pytest>=7.4",
            "fastapi>=0.109",
            "httpx>=0.25",
        ],
    },
    entry_points={
        "console_scripts": [
            "gearwatch=gearwatch.cli:main",
            "gearwatch-webui=gearwatch.webui.__main__:main",
        ],
    },
)
