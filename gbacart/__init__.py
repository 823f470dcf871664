"""Game Boy Advance cartridge, save memory, GPIO/RTC, DMA and debugger-expression models."""

__version__ = "0.1.0"