"""In-memory stand-ins for AI collaborators used across the test suite."""
from .fake_gateway import FakeGateway
from .fake_capabilities import FakeExtractionCapability, medical_output

__all__ = [
    "FakeGateway",
    "FakeExtractionCapability",
    "medical_output",
]
