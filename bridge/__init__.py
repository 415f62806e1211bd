"""MQTT to WebSocket bridge for classroom telemetry and flipper input."""
