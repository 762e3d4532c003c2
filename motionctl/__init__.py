"""Motor management, system state, binary and console command handling, and status reporting
for multi-axis motion control."""

__version__ = "0.1.0"