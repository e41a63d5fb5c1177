from setuptools import find_namespace_packages, setup


setup(
    name="pro-tts-studio",
    version="0.1.0",
    description="Text-to-speech studio: on-device speech plus a streaming cloud TTS forwarder.",
    package_dir={"": "src"},
    packages=find_namespace_packages("src"),
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2.6",
        "pydantic-settings>=2.2",
        "httpx>=0.27",
        "structlog>=24.1",
        "rich>=13.7",
        "typer>=0.12",
        "fastapi>=0.110",
        "uvicorn>=0.29",
        "pyttsx3>=2.90",
    ],
    extras_require={
        "dev": ["pytest>=8.0", "pytest-asyncio>=0.23", "ruff>=0.6", "mypy>=1.8"],
    },
    entry_points={"console_scripts": ["tts-studio=tts_studio.cli:app"]},
)
