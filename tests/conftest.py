import pytest

from bambu_bridge.core import PrinterDescriptor


@pytest.fixture
def make_descriptor():
    """Build printer descriptors with overridable connection fields."""

    def factory(printer_id: str = "p1", **overrides) -> PrinterDescriptor:
        fields = {
            "id": printer_id,
            "host": "192.168.1.50",
            "access_token": "12345678",
            "serial_number": "01P00A000000001",
            "model_hint": "P1S",
        }
        fields.update(overrides)
        return PrinterDescriptor(**fields)

    return factory
