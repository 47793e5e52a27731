"""
IoT Sentinel - IoT device identification, risk scoring and policy enforcement.

Discovers devices from passively observed traffic, identifies what each
device is, scores its security risk and enforces a configured policy
against it, then keeps that state current through periodic re-assessment.
"""

__version__ = "0.1.0"
__author__ = "IoT Sentinel Contributors"

from iotsentinel.config import SentinelConfig, load_config

__all__ = ["SentinelConfig", "load_config", "__version__"]
