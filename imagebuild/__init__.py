"""Container image build tooling: build contexts, executor and cache warmer options, release notes."""

__version__ = "1.16.0"