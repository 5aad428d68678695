"""Azure Compute sample: create VMs using a captured image or a specialized VHD."""

__version__ = "1.0.0"
