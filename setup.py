from setuptools import setup, find_packages

setup(
    name="chatgate",
    version="0.1.0",
    packages=find_packages(include=["chatgate", "chatgate.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn[standard]>=0.27",
        "pydantic>=2.6",
        "pydantic-settings>=2.7",
        "python-dotenv>=1.0",
        "python-multipart>=0.0.9",
        "httpx>=0.27",
        "redis>=5.0",
        "sqlalchemy[asyncio]>=2.0",
        "asyncpg>=0.29",
        "aiosqlite>=0.20",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "respx>=0.21",
        ],
    },
)
