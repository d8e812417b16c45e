"""HA-Firestore Bridge: two-way state sync between Home Assistant and Cloud Firestore."""

__version__ = "1.0.0"
