[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "imagebuild"
version = "1.16.0"
description = "Container image build tooling: build context resolution, executor option handling, cache warmer settings and release notes"
requires-python = ">=3.10"
dependencies = [
    "requests",
]
keywords = [
    "container",
    "image",
    "dockerfile",
    "build",
    "build-context",
    "registry",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Build Tools",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[project.scripts]
imagebuild-executor = "imagebuild.executor_cli:main"
imagebuild-release-notes = "imagebuild.release_notes:main"

[tool.hatch.build.targets.wheel]
packages = ["imagebuild"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
