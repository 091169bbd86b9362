"""Client library and CLI for BLE weather stations."""
