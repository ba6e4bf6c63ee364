from paho.mqtt.client import MQTTv5, MQTTv311

from .mqtt import MQTTClient as MQTTClient

__all__ = ["MQTTClient", "MQTTv311", "MQTTv5"]
