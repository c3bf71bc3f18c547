#================================================================================
# Setup.py - Traditional Python Package Setup
# ================================================================================
# Install with: pip install -e .
# Tests:        pip install -e ".[test]" && pytest
#

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="access-bridge",
    version="1.0.0",
    author="Your Team",
    author_email="team@example.com",
    description="Bridge between a local door-access controller and a cloud mobile-credential service",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/your-org/access-bridge",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Internet :: WWW/HTTP",
        "Topic :: Security",
    ],
    python_requires=">=3.10",
    install_requires=[
        "fastapi>=0.104.0",
        "uvicorn[standard]>=0.24.0",
        "pydantic>=2.4.0",
        "pydantic-settings>=2.0.0",
        "httpx>=0.25.0",
        "python-dotenv>=1.0.0",
        "python-dateutil>=2.8.2",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.24.0",
            "httpx>=0.25.0",
        ],
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.24.0",
            "pytest-cov>=4.1.0",
            "black>=23.11.0",
            "isort>=5.12.0",
            "flake8>=6.1.0",
            "mypy>=1.7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "access-bridge=access_bridge.api.main:main",
        ],
    },
)
