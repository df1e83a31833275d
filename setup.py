"""
Setup file.
"""

from pathlib import Path

from setuptools import find_packages, setup

URL = "https://github.com/process-executor/process-executor"
KEYWORDS = "subprocess process timeout process-tree"
HERE = Path(__file__).parent


if __name__ == "__main__":
    setup(
        name="process-executor",
        version="1.0.0",
        description="Run external commands with captured output, deadlines and process tree cleanup.",
        keywords=KEYWORDS,
        url=URL,
        python_requires=">=3.10",
        package_dir={"": "src"},
        packages=find_packages(where=str(HERE / "src")),
        install_requires=["psutil"],
        extras_require={"test": ["pytest"]},
        entry_points={"console_scripts": ["process-executor=process_executor.cli:main"]},
        include_package_data=True)
