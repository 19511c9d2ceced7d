from setuptools import setup

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

setup(
    name="e2e-harness",
    version="1.0.0",
    author="volkb79-2",
    description="Per-test backend, frontend and browser-login environments for end-to-end tests",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=["e2e_harness"],
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Testing",
        "Framework :: Pytest",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.10",
    install_requires=requirements,
    extras_require={
        "test": ["pytest>=7.4.0", "pytest-asyncio>=0.23.0"],
    },
    entry_points={
        "console_scripts": [
            "e2e-harness=e2e_harness.cli:main",
        ],
        "pytest11": [
            "e2e_harness=e2e_harness.fixtures",
        ],
    },
)
