from setuptools import setup, find_packages

setup(
    name="workstore",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "requests",
        "pyyaml",
        "numpy>=1.24",
        # Ticket dependency graph
        "networkx>=3.0",
        "tqdm>=4.60",
    ],
    extras_require={
        # OpenAI embeddings (install separately when needed)
        "semantic": [
            "openai>=1.0",
        ],
        "test": [
            "pytest>=7.0",
        ],
    },
    author="Uday Kanth",
    description="A local context store and ticket planner for AI coding assistants.",
)
