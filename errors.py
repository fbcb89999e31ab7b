class CatalogError(Exception):
    """Base class for catalog failures."""


class ConstraintViolation(CatalogError):
    """A write would break referential integrity."""


class DuplicateName(CatalogError):
    """A category with this name already exists."""


class StorageError(CatalogError):
    """The underlying database or filesystem failed."""
