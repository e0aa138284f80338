from setuptools import setup, find_packages

# Core requirements - always installed
REQUIRED = [
    "pydantic>=2.0.0,<3.0.0",

    # Langchain
    "langchain-core>=0.3.19,<2.0.0",

    # HTTP / streaming
    "httpx>=0.27.0,<1.0.0",
]

# Optional dependencies
EXTRAS = {
    "test": [
        "pytest>=8.0.0",
        "pytest-asyncio>=0.23.0",
    ],
}

setup(
    name="mianix-roleplay",
    version="0.1.0",
    description="Retrieval and generation core for character roleplay in an Obsidian vault",
    package_dir={"": "src"},
    packages=find_packages(where="src", exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=REQUIRED,
    extras_require=EXTRAS,
    entry_points={
        "console_scripts": [
            "mianix=mianix.cli:main"
        ]
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Operating System :: OS Independent",
    ],
    long_description_content_type="text/markdown",
    long_description=open("README.md", encoding="utf-8").read(),
    license="MIT",
    keywords="roleplay llm bm25 lorebook memory obsidian sse",
)
