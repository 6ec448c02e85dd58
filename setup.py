"""Setup script for Auto File Uploader."""

from setuptools import setup, find_packages

setup(
    name="auto-file-uploader",
    version="1.0.0",
    description="Watches a folder and uploads new or changed files into the AEM DAM on a cron schedule",
    long_description=open("README.md", encoding="utf-8").read(),
    long_description_content_type="text/markdown",
    python_requires=">=3.10",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "watchdog>=3.0.0",
        "requests>=2.31.0",
    ],
    extras_require={
        "windows": [
            "pywin32>=306",
        ],
        "test": [
            "pytest>=7.0",
            "responses>=0.23.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "auto-file-uploader=auto_uploader.__main__:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: No Input/Output (Daemon)",
        "Intended Audience :: System Administrators",
        "Operating System :: MacOS :: MacOS X",
        "Operating System :: Microsoft :: Windows",
        "Operating System :: POSIX :: Linux",
        "Programming Language :: Python :: 3",
        "Topic :: Utilities",
    ],
)
