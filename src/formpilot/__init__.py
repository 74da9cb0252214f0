"""FormPilot: cookbook-first, layered form filling for job applications."""

__version__ = "0.3.0"
