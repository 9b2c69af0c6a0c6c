from __future__ import annotations


class PricingError(Exception):
    """Base class for errors raised by the pricing engine."""

    kind = "PricingError"


class UnsupportedMetalError(PricingError):
    """A variant material has no active variant for the requested metal."""

    kind = "UnsupportedMetalError"

    def __init__(self, material_id: str, metal_key: str | None):
        self.material_id = material_id
        self.metal_key = metal_key
        target = metal_key or "an unspecified metal"
        super().__init__(f"Material {material_id} has no active variant for {target}")


class IncompatibleMetalError(PricingError):
    """A task requires a metal one of its components cannot serve."""

    kind = "IncompatibleMetalError"

    def __init__(self, reference_type: str, reference_id: str, metal_key: str | None):
        self.reference_type = reference_type
        self.reference_id = reference_id
        self.metal_key = metal_key
        target = metal_key or "an unspecified metal"
        super().__init__(f"{reference_type.capitalize()} {reference_id} does not support {target}")


class MissingReferenceError(PricingError):
    kind = "MissingReferenceError"

    def __init__(self, reference_type: str, reference_id: str):
        self.reference_type = reference_type
        self.reference_id = reference_id
        super().__init__(f"Referenced {reference_type} {reference_id} does not exist")


class InvalidSettingsError(PricingError, ValueError):
    kind = "InvalidSettingsError"

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class InvalidCatalogDataError(PricingError, ValueError):
    """A material, process or task payload violates the catalog invariants."""

    kind = "InvalidCatalogDataError"

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class PersistenceUnavailableError(PricingError):
    """The data store cannot be reached."""

    kind = "PersistenceUnavailableError"
