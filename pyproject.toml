[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kdnsaux"
version = "0.1.0"
description = "dnsmasq supervision, cache statistics, Prometheus-style metrics and end-to-end test helpers for cluster DNS"
requires-python = ">=3.10"
dependencies = [
    "dnspython",
]
keywords = ["dns", "dnsmasq", "metrics", "prometheus", "kubernetes", "e2e"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Name Service (DNS)",
    "Topic :: System :: Monitoring",
    "Topic :: Software Development :: Testing",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["kdnsaux"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
