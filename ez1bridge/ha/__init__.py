"""
Home Assistant integration: MQTT discovery and command handling.
"""
