[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "aksprovision"
version = "0.1.0"
description = "Node provisioning helpers for AKS clusters: instance types, pricing, launch templates and load balancer pools"
requires-python = ">=3.10"
dependencies = []
keywords = ["aks", "kubernetes", "autoscaling", "provisioning", "instance-types", "pricing"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Clustering",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["aksprovision"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
