[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "hlexporter"
version = "0.1.0"
description = "Metrics exporter for Hyperliquid nodes, serving Prometheus metrics and pushing OTLP"
requires-python = ">=3.10"
keywords = ["hyperliquid", "prometheus", "opentelemetry", "otlp", "metrics", "validator", "monitoring"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]
dependencies = [
    "python-dotenv",
    "requests",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[tool.hatch.build.targets.wheel]
packages = ["hlexporter"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
