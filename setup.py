from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="commit-draft",
    version="0.1.0",
    author="Your Name",
    description="Offline commit message drafting with a local language model",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Version Control :: Git",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.9",
    install_requires=[
        "torch>=2.1.0",
        "transformers>=4.45.0",
        "tokenizers>=0.19.0",
        "safetensors>=0.4.0",
        "gguf>=0.10.0",
        "peft>=0.5.0",
        "accelerate>=0.24.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "numpy>=1.24",
            "black>=23.0",
            "flake8>=6.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "commit-draft=commit_draft.cli:main",
        ],
    },
)
