"""
Bridge between the APsystems EZ1 microinverter local API and MQTT.
"""

__version__ = "1.0.0"
