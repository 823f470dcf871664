"""Exception types raised while loading and emulating cartridges."""


class GBAError(Exception):
    """Base class for all errors raised by this package."""


class CartridgeLoadError(GBAError):
    """A cartridge image could not be loaded or its header is malformed."""