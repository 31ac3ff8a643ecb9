from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="costpilot",
    version="0.1.0",
    author="costpilot contributors",
    description="Autonomous cloud cost-optimization recommendation engine",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: System Administrators",
        "Topic :: System :: Systems Administration",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.9",
    install_requires=[
        "click>=8.0.0",
        "pyyaml>=6.0",
        "rich>=13.0.0",
        "pandas>=2.0.0",
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "httpx>=0.24.0",
        "PyJWT>=2.8.0",
    ],
    extras_require={
        "aws": ["boto3>=1.28.0", "botocore>=1.31.0"],
        "api": ["fastapi>=0.100.0", "uvicorn>=0.23.0"],
        "test": ["pytest>=7.0.0", "fastapi>=0.100.0", "boto3>=1.28.0", "botocore>=1.31.0"],
        "dev": ["pytest>=7.0.0", "black>=23.0.0", "flake8>=6.0.0", "mypy>=1.0.0"],
    },
    entry_points={
        "console_scripts": [
            "costpilot=costpilot.cli.main:cli",
        ],
    },
)
